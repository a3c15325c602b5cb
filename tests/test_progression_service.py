"""Tests for ProgressionService: XP awards, streaks, badges, high scores, dashboard."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from progression.core.errors import InvalidInputError, StorageError
from progression.models.enums import XPAction
from progression.models.gamification import UserBadge, UserProgress, XPTransaction
from progression.modules.gamification.badges import BadgeContext
from progression.modules.gamification.service import AwardOptions, ProgressionService
from progression.modules.gamification.streaks import StreakOutcome, next_streak_state
from tests.conftest import OTHER_USER_ID, SAMPLE_USER_ID, THIRD_USER_ID

QUIET = AwardOptions(check_badges=False, update_streak=False)


async def _count(db: AsyncSession, stmt) -> int:
    return int((await db.execute(stmt)).scalar_one())


# ── AwardXP ───────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_award_creates_progress_row_and_ledger_entry(svc: ProgressionService, db: AsyncSession) -> None:
    result = await svc.award_xp(SAMPLE_USER_ID, XPAction.DISCLOSURE_GENERATE, QUIET)

    assert result.xp_awarded == 15
    assert result.total_xp == 15
    assert result.streak_update is None
    progress = await svc.ledger.get_progress(SAMPLE_USER_ID)
    assert progress.total_disclosures_generated == 1
    assert await svc.ledger.ledger_total(SAMPLE_USER_ID) == 15


@pytest.mark.asyncio
async def test_audit_improve_counts_as_audit(svc: ProgressionService) -> None:
    await svc.award_xp(SAMPLE_USER_ID, "audit_improve", QUIET)
    await svc.award_xp(SAMPLE_USER_ID, "audit_complete", QUIET)

    progress = await svc.ledger.get_progress(SAMPLE_USER_ID)
    assert progress.total_audits_completed == 2
    assert progress.total_xp == 45


@pytest.mark.asyncio
async def test_crossing_threshold_levels_up(svc: ProgressionService) -> None:
    await svc.award_xp(
        SAMPLE_USER_ID,
        XPAction.RESEARCH_QUERY,
        AwardOptions(custom_xp=90, check_badges=False, update_streak=False),
    )

    result = await svc.award_xp(
        SAMPLE_USER_ID, XPAction.PROMPT_ANALYZE, AwardOptions(check_badges=False)
    )

    assert result.total_xp == 100
    assert result.previous_level == 1
    assert result.new_level == 2
    assert result.leveled_up is True
    assert result.xp_awarded == 10


@pytest.mark.asyncio
async def test_unknown_action_writes_nothing(svc: ProgressionService, db: AsyncSession) -> None:
    with pytest.raises(InvalidInputError):
        await svc.award_xp(SAMPLE_USER_ID, "write_essay")

    assert await _count(db, select(func.count(UserProgress.id))) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("custom_xp", [0, -5])
async def test_non_positive_xp_is_rejected(svc: ProgressionService, custom_xp: int) -> None:
    with pytest.raises(InvalidInputError):
        await svc.award_xp(SAMPLE_USER_ID, XPAction.PROMPT_ANALYZE, AwardOptions(custom_xp=custom_xp))


@pytest.mark.asyncio
async def test_badge_earned_needs_an_explicit_amount(svc: ProgressionService) -> None:
    with pytest.raises(InvalidInputError):
        await svc.award_xp(SAMPLE_USER_ID, XPAction.BADGE_EARNED)


@pytest.mark.asyncio
async def test_ledger_sum_matches_total_across_bonuses_and_badges(
    svc: ProgressionService, clock
) -> None:
    for _ in range(3):
        await svc.award_xp(SAMPLE_USER_ID, XPAction.PROMPT_ANALYZE)
        clock.advance(days=1)
    await svc.award_xp(SAMPLE_USER_ID, XPAction.AUDIT_COMPLETE)

    progress = await svc.ledger.get_progress(SAMPLE_USER_ID)
    assert progress.total_xp == await svc.ledger.ledger_total(SAMPLE_USER_ID)
    assert progress.current_streak == 4


# ── Streaks ───────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_streak_day_one_two_then_gap(svc: ProgressionService, clock) -> None:
    day1 = await svc.award_xp(SAMPLE_USER_ID, XPAction.GRAMMAR_CHECK, AwardOptions(check_badges=False))
    assert day1.streak_update.current_streak == 1
    assert day1.streak_update.bonus_xp == 0

    clock.advance(days=1)
    day2 = await svc.award_xp(SAMPLE_USER_ID, XPAction.GRAMMAR_CHECK, AwardOptions(check_badges=False))
    assert day2.streak_update.current_streak == 2
    assert day2.streak_update.bonus_xp > 0
    assert day2.xp_awarded == 3 + day2.streak_update.bonus_xp

    clock.advance(days=2)
    day4 = await svc.award_xp(SAMPLE_USER_ID, XPAction.GRAMMAR_CHECK, AwardOptions(check_badges=False))
    assert day4.streak_update.current_streak == 1
    assert day4.streak_update.streak_broken is True
    assert day4.streak_update.bonus_xp == 0

    progress = await svc.ledger.get_progress(SAMPLE_USER_ID)
    assert progress.longest_streak == 2


@pytest.mark.asyncio
async def test_two_activities_same_day_count_once(svc: ProgressionService, clock) -> None:
    await svc.award_xp(SAMPLE_USER_ID, XPAction.PAPER_SAVE, AwardOptions(check_badges=False))
    clock.advance(hours=6)
    second = await svc.award_xp(SAMPLE_USER_ID, XPAction.PAPER_SAVE, AwardOptions(check_badges=False))

    assert second.streak_update.current_streak == 1
    assert second.streak_update.bonus_xp == 0
    assert second.streak_update.streak_broken is False


@pytest.mark.asyncio
async def test_apply_streak_refuses_stale_read(svc: ProgressionService, clock) -> None:
    await svc.ledger.ensure_progress(SAMPLE_USER_ID)
    today = clock().date()
    transition = next_streak_state(None, 0, 0, today)
    assert transition.outcome is StreakOutcome.STARTED

    assert await svc.ledger.apply_streak(SAMPLE_USER_ID, None, transition, today) == (1, 1)
    # a second request that also read last_activity_date=None loses the race
    assert await svc.ledger.apply_streak(SAMPLE_USER_ID, None, transition, today) is None


def _locked() -> OperationalError:
    return OperationalError("UPDATE user_progress", {}, Exception("database is locked"))


@pytest.mark.asyncio
async def test_streak_failure_keeps_the_award(svc: ProgressionService) -> None:
    svc.ledger.apply_streak = AsyncMock(side_effect=_locked())

    result = await svc.award_xp(SAMPLE_USER_ID, XPAction.PROMPT_ANALYZE, AwardOptions(check_badges=False))

    assert result.streak_update is None
    assert result.xp_awarded == 10
    assert result.total_xp == 10
    progress = await svc.ledger.get_progress(SAMPLE_USER_ID)
    assert progress.total_xp == 10
    assert progress.current_streak == 0
    assert await svc.ledger.ledger_total(SAMPLE_USER_ID) == 10


@pytest.mark.asyncio
async def test_try_record_activity_survives_streak_failure(svc: ProgressionService) -> None:
    svc.ledger.apply_streak = AsyncMock(side_effect=_locked())

    result = await svc.try_record_activity(SAMPLE_USER_ID, XPAction.PROMPT_ANALYZE)

    assert result is not None
    assert result.streak_update is None
    assert [b.id for b in result.new_badges] == ["first_prompt"]
    progress = await svc.ledger.get_progress(SAMPLE_USER_ID)
    assert progress is not None
    assert progress.total_xp == 20
    assert await svc.ledger.ledger_total(SAMPLE_USER_ID) == 20


# ── Badges ────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_first_award_unlocks_first_badge_with_xp(svc: ProgressionService) -> None:
    result = await svc.award_xp(SAMPLE_USER_ID, XPAction.PROMPT_ANALYZE)

    assert [b.id for b in result.new_badges] == ["first_prompt"]
    # badge payout is reflected in the returned totals but not in xp_awarded
    assert result.xp_awarded == 10
    assert result.total_xp == 20


@pytest.mark.asyncio
async def test_badge_evaluation_is_idempotent(svc: ProgressionService, db: AsyncSession) -> None:
    await svc.award_xp(SAMPLE_USER_ID, XPAction.RESEARCH_QUERY, QUIET)

    first = await svc.evaluate_badges(SAMPLE_USER_ID, XPAction.RESEARCH_QUERY)
    second = await svc.evaluate_badges(SAMPLE_USER_ID, XPAction.RESEARCH_QUERY)

    assert [b.id for b in first] == ["curious_mind"]
    assert second == []
    assert await _count(
        db, select(func.count(UserBadge.id)).where(UserBadge.badge_id == "curious_mind")
    ) == 1
    assert await _count(
        db,
        select(func.count(XPTransaction.id)).where(
            XPTransaction.action == XPAction.BADGE_EARNED.value,
            XPTransaction.reference_id == "curious_mind",
        ),
    ) == 1


@pytest.mark.asyncio
async def test_insert_badge_if_absent_reports_only_first_writer(svc: ProgressionService) -> None:
    assert await svc.ledger.insert_badge_if_absent(SAMPLE_USER_ID, "bookworm") is True
    assert await svc.ledger.insert_badge_if_absent(SAMPLE_USER_ID, "bookworm") is False


@pytest.mark.asyncio
async def test_badge_failure_keeps_the_award(svc: ProgressionService) -> None:
    svc.ledger.insert_badge_if_absent = AsyncMock(side_effect=RuntimeError("insert failed"))

    result = await svc.award_xp(SAMPLE_USER_ID, XPAction.PROMPT_ANALYZE)

    assert result.new_badges == []
    assert result.total_xp == 10
    progress = await svc.ledger.get_progress(SAMPLE_USER_ID)
    assert progress.total_xp == 10


@pytest.mark.asyncio
async def test_score_context_badges(svc: ProgressionService) -> None:
    await svc.award_xp(SAMPLE_USER_ID, XPAction.AUDIT_IMPROVE, QUIET)

    earned = await svc.evaluate_badges(
        SAMPLE_USER_ID,
        XPAction.AUDIT_IMPROVE,
        BadgeContext(score=92, improvement=15, requirements_percentage=100),
    )

    assert {b.id for b in earned} == {"first_audit", "audit_ace", "comeback", "brief_nailed"}


# ── High scores ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_high_score_only_increases(svc: ProgressionService) -> None:
    first = await svc.update_high_score(SAMPLE_USER_ID, "prompt", 70)
    lower = await svc.update_high_score(SAMPLE_USER_ID, "prompt", 60)
    equal = await svc.update_high_score(SAMPLE_USER_ID, "prompt", 70)
    higher = await svc.update_high_score(SAMPLE_USER_ID, "prompt", 85)

    assert (first.is_new_high_score, first.previous_high_score) == (True, 0)
    assert (lower.is_new_high_score, lower.previous_high_score) == (False, 70)
    assert equal.is_new_high_score is False
    assert (higher.is_new_high_score, higher.previous_high_score) == (True, 70)
    progress = await svc.ledger.get_progress(SAMPLE_USER_ID)
    assert progress.highest_prompt_score == 85
    assert progress.highest_audit_score == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(("kind", "score"), [("prompt", 101), ("prompt", -1), ("essay", 50)])
async def test_high_score_rejects_bad_input(svc: ProgressionService, kind: str, score: int) -> None:
    with pytest.raises(InvalidInputError):
        await svc.update_high_score(SAMPLE_USER_ID, kind, score)


# ── Composite activity ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_record_activity_with_new_high_score(svc: ProgressionService) -> None:
    result = await svc.record_activity(SAMPLE_USER_ID, XPAction.PROMPT_ANALYZE, score=85)

    # 10 for the action, 100 for the high score; badges: first_prompt 10, sharp_prompt 25
    assert result.xp_awarded == 110
    assert result.total_xp == 145
    assert result.new_level == 2
    assert result.leveled_up is True
    assert result.high_score.is_new_high_score is True
    assert {b.id for b in result.new_badges} == {"first_prompt", "sharp_prompt"}
    assert result.challenge_completed is None
    assert await svc.ledger.ledger_total(SAMPLE_USER_ID) == 145


@pytest.mark.asyncio
async def test_try_record_activity_degrades_to_none(svc: ProgressionService) -> None:
    svc.ledger.add_xp = AsyncMock(side_effect=StorageError("database unavailable"))

    assert await svc.try_record_activity(SAMPLE_USER_ID, XPAction.PROMPT_ANALYZE) is None


@pytest.mark.asyncio
async def test_try_record_activity_returns_result_when_healthy(svc: ProgressionService) -> None:
    result = await svc.try_record_activity(SAMPLE_USER_ID, XPAction.GRAMMAR_CHECK)
    assert result is not None
    assert result.xp_awarded == 3


# ── Reads ─────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_dashboard_for_unknown_user_is_zeroed_and_read_only(
    svc: ProgressionService, db: AsyncSession
) -> None:
    snapshot = await svc.get_dashboard(SAMPLE_USER_ID)

    assert snapshot.user.total_xp == 0
    assert snapshot.current_level.level == 1
    assert snapshot.next_level.level == 2
    assert snapshot.xp_to_next_level == 100
    assert snapshot.progress_percent == 0
    assert snapshot.recent_xp == []
    assert snapshot.total_badges == 0
    assert await _count(db, select(func.count(UserProgress.id))) == 0


@pytest.mark.asyncio
async def test_dashboard_math(svc: ProgressionService) -> None:
    await svc.award_xp(
        SAMPLE_USER_ID, XPAction.RESEARCH_QUERY, AwardOptions(custom_xp=150, check_badges=False, update_streak=False)
    )

    snapshot = await svc.get_dashboard(SAMPLE_USER_ID)

    assert snapshot.current_level.level == 2
    assert snapshot.xp_to_next_level == 150
    assert snapshot.progress_percent == 25
    assert len(snapshot.recent_xp) == 1


@pytest.mark.asyncio
async def test_dashboard_at_max_level(svc: ProgressionService) -> None:
    await svc.award_xp(
        SAMPLE_USER_ID, XPAction.RESEARCH_QUERY, AwardOptions(custom_xp=12000, check_badges=False, update_streak=False)
    )

    snapshot = await svc.get_dashboard(SAMPLE_USER_ID)

    assert snapshot.current_level.level == 10
    assert snapshot.next_level is None
    assert snapshot.xp_to_next_level == 0
    assert snapshot.progress_percent == 100


@pytest.mark.asyncio
async def test_leaderboard_rank_outside_top(svc: ProgressionService) -> None:
    for user_id, xp in ((SAMPLE_USER_ID, 50), (OTHER_USER_ID, 200), (THIRD_USER_ID, 120)):
        await svc.award_xp(
            user_id, XPAction.RESEARCH_QUERY, AwardOptions(custom_xp=xp, check_badges=False, update_streak=False)
        )

    board = await svc.get_leaderboard(SAMPLE_USER_ID, limit=2)

    assert [e.user_id for e in board.leaderboard] == [OTHER_USER_ID, THIRD_USER_ID]
    assert board.user_rank == 3
    assert board.user_xp == 50

    full = await svc.get_leaderboard(SAMPLE_USER_ID)
    assert full.user_rank == 3
    assert full.leaderboard[2].user_id == SAMPLE_USER_ID


@pytest.mark.asyncio
async def test_badges_with_status(svc: ProgressionService) -> None:
    await svc.award_xp(SAMPLE_USER_ID, XPAction.PROMPT_ANALYZE)

    status = await svc.get_badges_with_status(SAMPLE_USER_ID)

    earned = [b.id for b in status.badges if b.earned]
    assert earned == ["first_prompt"]
    assert status.earned_count == 1
    assert status.total_badges == len(status.badges)
    assert sum(len(v) for v in status.grouped.values()) == status.total_badges


# ── Concurrent sessions ──────────────────────────────────────────────────────


async def _totals(engine: AsyncEngine) -> tuple[int, int]:
    async with AsyncSession(engine) as fresh:
        ledger = ProgressionService(fresh).ledger
        progress = await ledger.get_progress(SAMPLE_USER_ID)
        return progress.total_xp, await ledger.ledger_total(SAMPLE_USER_ID)


@pytest.mark.asyncio
async def test_badge_race_between_sessions_pays_once(engine: AsyncEngine, clock) -> None:
    async with AsyncSession(engine, expire_on_commit=False) as setup:
        await ProgressionService(setup, clock=clock).award_xp(SAMPLE_USER_ID, XPAction.RESEARCH_QUERY, QUIET)
        await setup.commit()

    async with (
        AsyncSession(engine, expire_on_commit=False) as first,
        AsyncSession(engine, expire_on_commit=False) as second,
    ):
        svc_a = ProgressionService(first, clock=clock)
        svc_b = ProgressionService(second, clock=clock)

        # the second request reads its earned set before the first one writes
        seen = await svc_b.ledger.earned_badge_ids(SAMPLE_USER_ID)
        await second.commit()
        svc_b.ledger.earned_badge_ids = AsyncMock(return_value=seen)

        won = await svc_a.evaluate_badges(SAMPLE_USER_ID, XPAction.RESEARCH_QUERY)
        await first.commit()
        lost = await svc_b.evaluate_badges(SAMPLE_USER_ID, XPAction.RESEARCH_QUERY)
        await second.commit()

    assert [b.id for b in won] == ["curious_mind"]
    assert lost == []
    async with AsyncSession(engine) as fresh:
        assert await _count(
            fresh, select(func.count(UserBadge.id)).where(UserBadge.badge_id == "curious_mind")
        ) == 1
        assert await _count(
            fresh,
            select(func.count(XPTransaction.id)).where(
                XPTransaction.action == XPAction.BADGE_EARNED.value,
                XPTransaction.reference_id == "curious_mind",
            ),
        ) == 1
    total, ledger = await _totals(engine)
    assert total == ledger


@pytest.mark.asyncio
async def test_stale_streak_read_in_other_session_is_refused(engine: AsyncEngine, clock) -> None:
    async with AsyncSession(engine, expire_on_commit=False) as setup:
        await ProgressionService(setup, clock=clock).ledger.ensure_progress(SAMPLE_USER_ID)
        await setup.commit()

    today = clock().date()
    async with (
        AsyncSession(engine, expire_on_commit=False) as first,
        AsyncSession(engine, expire_on_commit=False) as second,
    ):
        svc_a = ProgressionService(first, clock=clock)
        svc_b = ProgressionService(second, clock=clock)

        seen = await svc_b.ledger.get_progress(SAMPLE_USER_ID)
        seen_last = seen.last_activity_date
        transition = next_streak_state(seen_last, seen.current_streak, seen.longest_streak, today)
        await second.commit()

        await svc_a.award_xp(SAMPLE_USER_ID, XPAction.PROMPT_ANALYZE, AwardOptions(check_badges=False))
        await first.commit()

        assert await svc_b.ledger.apply_streak(SAMPLE_USER_ID, seen_last, transition, today) is None
        await second.commit()

    async with AsyncSession(engine) as fresh:
        streak = (await fresh.execute(
            select(UserProgress.current_streak).where(UserProgress.user_id == SAMPLE_USER_ID)
        )).scalar_one()
    assert streak == 1
    assert await _totals(engine) == (10, 10)
