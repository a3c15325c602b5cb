"""Gamification service: XP awards, streaks, badge unlocks, daily challenges, dashboard.

``ProgressionService`` is the only writer of progression state. Feature routes
call ``award_xp`` (or ``record_activity`` for the full post-action bundle);
the dashboard and leaderboard are pure reads.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from progression.core.config import settings
from progression.core.errors import CatalogLookupError, InvalidInputError, ProgressionError, StorageError
from progression.models.enums import BadgeCategory, ScoreKind, XPAction
from progression.models.gamification import UserProgress
from progression.modules.gamification import levels
from progression.modules.gamification.badges import (
    BADGES,
    BadgeContext,
    BadgeDefinition,
    badge_unlocked,
    get_badge,
)
from progression.modules.gamification.challenges import ensure_daily_challenges
from progression.modules.gamification.ledger import ProgressLedger
from progression.modules.gamification.rewards import (
    ACTION_COUNTERS,
    XP_REWARDS,
    check_score,
    parse_action,
    parse_score_kind,
    score_kind_for_action,
)
from progression.modules.gamification.schemas import (
    ActivityResult,
    AwardResult,
    BadgeOut,
    BadgesResponse,
    BadgeStatusOut,
    ChallengeOut,
    ChallengeProgressOut,
    ChallengeProgressResult,
    ChallengeWithProgress,
    DashboardSnapshot,
    HighScoreResult,
    LeaderboardEntry,
    LeaderboardResponse,
    LevelOut,
    StreakUpdate,
    UserBadgeOut,
    UserProgressOut,
    XPTransactionOut,
)
from progression.modules.gamification.streaks import next_streak_state

logger = structlog.get_logger()

Clock = Callable[[], datetime]


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AwardOptions:
    """Per-call knobs for ``award_xp``.

    ``check_badges`` / ``update_streak`` are switched off by nested awards
    (badge payouts, challenge payouts, high-score bonuses) so one real-world
    event never re-enters streak or badge evaluation.
    """

    custom_xp: int | None = None
    description: str | None = None
    reference_type: str | None = None
    reference_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    check_badges: bool = True
    update_streak: bool = True
    badge_context: BadgeContext | None = None


class ProgressionService:
    def __init__(self, db: AsyncSession, clock: Clock | None = None) -> None:
        self.db = db
        self.ledger = ProgressLedger(db)
        self._clock = clock or utc_clock

    def today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    # ── Award ──────────────────────────────────────────────────────────────────

    async def award_xp(
        self,
        user_id: uuid.UUID,
        action: XPAction | str,
        options: AwardOptions | None = None,
    ) -> AwardResult:
        """Grant XP for ``action`` and run streak and badge evaluation.

        Input is validated before any write. The XP increment and its ledger
        entry land in the caller's transaction; streak and badge evaluation
        each run in a savepoint so a failure there never takes the earned XP
        with it.
        """
        opts = options or AwardOptions()
        action = parse_action(action)
        xp = XP_REWARDS[action] if opts.custom_xp is None else opts.custom_xp
        if isinstance(xp, bool) or not isinstance(xp, int) or xp <= 0:
            raise InvalidInputError(
                f"XP for {action.value} must be a positive integer", action=action.value, xp=xp
            )

        try:
            await self.ledger.ensure_progress(user_id)
            total_xp, new_level = await self.ledger.add_xp(user_id, xp, ACTION_COUNTERS.get(action))
            previous_level = levels.level_for_xp(total_xp - xp)
            await self.ledger.append_transaction(
                user_id,
                action.value,
                xp,
                opts.description or f"Earned {xp} XP for {action.value}",
                reference_type=opts.reference_type,
                reference_id=opts.reference_id,
                metadata=opts.metadata,
            )
        except SQLAlchemyError as exc:
            raise StorageError("Could not record XP award", user_id=str(user_id)) from exc

        logger.info(
            "xp.awarded",
            user_id=str(user_id),
            action=action.value,
            xp=xp,
            total_xp=total_xp,
        )

        streak_update: StreakUpdate | None = None
        bonus_xp = 0
        if opts.update_streak:
            streak_update = await self._update_streak_isolated(user_id)
            if streak_update is not None and streak_update.bonus_xp > 0:
                bonus_xp = streak_update.bonus_xp
                progress = await self.ledger.get_progress(user_id)
                if progress is not None:
                    total_xp, new_level = progress.total_xp, progress.current_level

        new_badges: list[BadgeDefinition] = []
        if opts.check_badges:
            context = opts.badge_context or BadgeContext(
                reference_type=opts.reference_type, reference_id=opts.reference_id
            )
            new_badges = await self._evaluate_badges_isolated(user_id, action, context)
            if new_badges:
                progress = await self.ledger.get_progress(user_id)
                if progress is not None:
                    total_xp, new_level = progress.total_xp, progress.current_level

        return AwardResult(
            xp_awarded=xp + bonus_xp,
            total_xp=total_xp,
            previous_level=previous_level,
            new_level=new_level,
            leveled_up=new_level > previous_level,
            new_badges=[BadgeOut.from_definition(b) for b in new_badges],
            streak_update=streak_update,
        )

    # ── Streak ─────────────────────────────────────────────────────────────────

    async def _update_streak_isolated(self, user_id: uuid.UUID) -> StreakUpdate | None:
        """Streak transition and its bonus inside a savepoint.

        A failure rolls back only the streak work and yields None; the XP
        already added by the caller stands.
        """
        try:
            async with self.db.begin_nested():
                return await self._update_streak(user_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("streak.update_failed", user_id=str(user_id), error=str(exc))
            return None

    async def _update_streak(self, user_id: uuid.UUID) -> StreakUpdate:
        today = self.today()
        progress = await self.ledger.get_progress(user_id)
        if progress is None:
            raise StorageError("Progress row missing during streak update", user_id=str(user_id))

        transition = next_streak_state(
            progress.last_activity_date,
            progress.current_streak,
            progress.longest_streak,
            today,
        )
        if not transition.changes_row:
            return StreakUpdate(current_streak=progress.current_streak, streak_broken=False, bonus_xp=0)

        try:
            applied = await self.ledger.apply_streak(
                user_id, progress.last_activity_date, transition, today
            )
        except SQLAlchemyError as exc:
            raise StorageError("Could not update streak", user_id=str(user_id)) from exc

        if applied is None:
            # a concurrent request already counted today
            fresh = await self.ledger.get_progress(user_id)
            current = fresh.current_streak if fresh is not None else progress.current_streak
            logger.debug("streak.already_advanced", user_id=str(user_id))
            return StreakUpdate(current_streak=current, streak_broken=False, bonus_xp=0)

        current_streak, longest_streak = applied
        if transition.bonus_xp > 0:
            try:
                await self.ledger.add_xp(user_id, transition.bonus_xp)
                await self.ledger.append_transaction(
                    user_id,
                    XPAction.STREAK_BONUS.value,
                    transition.bonus_xp,
                    f"{current_streak}-day streak bonus!",
                    metadata={"streak": current_streak},
                )
            except SQLAlchemyError as exc:
                raise StorageError("Could not record streak bonus", user_id=str(user_id)) from exc

        logger.info(
            "streak.updated",
            user_id=str(user_id),
            outcome=transition.outcome.value,
            current_streak=current_streak,
            longest_streak=longest_streak,
            bonus_xp=transition.bonus_xp,
        )
        return StreakUpdate(
            current_streak=current_streak,
            streak_broken=transition.streak_broken,
            bonus_xp=transition.bonus_xp,
        )

    # ── Badges ─────────────────────────────────────────────────────────────────

    async def _evaluate_badges_isolated(
        self,
        user_id: uuid.UUID,
        trigger_action: XPAction,
        context: BadgeContext,
    ) -> list[BadgeDefinition]:
        """Badge evaluation inside a savepoint. Failures are logged, not raised."""
        try:
            async with self.db.begin_nested():
                return await self.evaluate_badges(user_id, trigger_action, context)
        except CatalogLookupError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "badges.evaluation_failed",
                user_id=str(user_id),
                action=trigger_action.value,
                error=str(exc),
            )
            return []

    async def evaluate_badges(
        self,
        user_id: uuid.UUID,
        trigger_action: XPAction | str,
        context: BadgeContext | None = None,
    ) -> list[BadgeDefinition]:
        """Award every catalog badge the user now qualifies for.

        Predicates read the post-update aggregate. A badge is paid out only by
        the call whose insert created the (user, badge) row.
        """
        trigger_action = parse_action(trigger_action)
        context = context or BadgeContext()
        progress = await self.ledger.get_progress(user_id)
        if progress is None:
            return []

        earned = await self.ledger.earned_badge_ids(user_id)
        newly_earned: list[BadgeDefinition] = []
        for badge in BADGES:
            if badge.id in earned:
                continue
            if not badge_unlocked(badge.condition, progress, trigger_action, context):
                continue

            inserted = await self.ledger.insert_badge_if_absent(
                user_id, badge.id, context.reference_type, context.reference_id
            )
            if not inserted:
                logger.debug("badge.already_awarded", user_id=str(user_id), badge=badge.id)
                continue

            if badge.xp_reward > 0:
                await self.ledger.add_xp(user_id, badge.xp_reward)
                await self.ledger.append_transaction(
                    user_id,
                    XPAction.BADGE_EARNED.value,
                    badge.xp_reward,
                    f"Earned badge: {badge.name}",
                    reference_type="badge",
                    reference_id=badge.id,
                )
            newly_earned.append(badge)
            logger.info("badge.earned", user_id=str(user_id), badge=badge.id, xp=badge.xp_reward)

        return newly_earned

    # ── High scores ────────────────────────────────────────────────────────────

    async def update_high_score(
        self, user_id: uuid.UUID, kind: ScoreKind | str, score: int
    ) -> HighScoreResult:
        kind = parse_score_kind(kind)
        check_score(score)
        try:
            await self.ledger.ensure_progress(user_id)
            raised, previous = await self.ledger.raise_high_score(user_id, kind, score)
        except SQLAlchemyError as exc:
            raise StorageError("Could not update high score", user_id=str(user_id)) from exc
        if raised:
            logger.info(
                "high_score.raised",
                user_id=str(user_id),
                kind=kind.value,
                score=score,
                previous=previous,
            )
        return HighScoreResult(is_new_high_score=raised, previous_high_score=previous)

    # ── Daily challenges ───────────────────────────────────────────────────────

    async def record_challenge_progress(
        self, user_id: uuid.UUID, action: XPAction | str
    ) -> ChallengeProgressResult:
        """Count ``action`` towards today's matching challenges.

        Every open challenge for the action is counted. Each challenge this
        call completes pays its reward through ``award_xp`` with streak and
        badge evaluation switched off; the first one is reported.
        """
        action = parse_action(action)
        now = self._clock()
        challenges = await self.ledger.challenges_for(self.today(), action.value)
        if not challenges:
            return ChallengeProgressResult()

        result = ChallengeProgressResult()
        try:
            for challenge in challenges:
                await self.ledger.ensure_challenge_progress(user_id, challenge.id)
                count = await self.ledger.bump_challenge(user_id, challenge)
                if count is None:
                    continue  # already completed, or full and waiting on the flip
                logger.debug(
                    "challenge.progress",
                    user_id=str(user_id),
                    challenge=challenge.title,
                    count=count,
                    target=challenge.target_count,
                )
                if count < challenge.target_count:
                    continue
                if not await self.ledger.complete_challenge(user_id, challenge, now):
                    continue

                logger.info("challenge.completed", user_id=str(user_id), challenge=challenge.title)
                await self.award_xp(
                    user_id,
                    XPAction.DAILY_CHALLENGE,
                    AwardOptions(
                        custom_xp=challenge.xp_reward,
                        description=f"Completed daily challenge: {challenge.title}",
                        reference_type="challenge",
                        reference_id=str(challenge.id),
                        check_badges=False,
                        update_streak=False,
                    ),
                )
                if result.completed_challenge is None:
                    result.completed_challenge = ChallengeOut.model_validate(challenge)
                result.xp_awarded += challenge.xp_reward
        except SQLAlchemyError as exc:
            raise StorageError("Could not record challenge progress", user_id=str(user_id)) from exc

        return result

    async def get_daily_challenges(self, user_id: uuid.UUID) -> list[ChallengeWithProgress]:
        challenges = await self.ledger.challenges_for(self.today())
        progress = await self.ledger.challenge_progress_for(user_id, [c.id for c in challenges])
        items: list[ChallengeWithProgress] = []
        for challenge in challenges:
            row = progress.get(challenge.id)
            items.append(
                ChallengeWithProgress(
                    **ChallengeOut.model_validate(challenge).model_dump(),
                    progress=ChallengeProgressOut.model_validate(row) if row else None,
                )
            )
        return items

    async def ensure_todays_challenges(self) -> int:
        return await ensure_daily_challenges(self.db, self.today())

    # ── Composite feature-route entry points ──────────────────────────────────

    async def record_activity(
        self,
        user_id: uuid.UUID,
        action: XPAction | str,
        options: AwardOptions | None = None,
        score: int | None = None,
        improvement: int | None = None,
        requirements_percentage: int | None = None,
    ) -> ActivityResult:
        """Award XP for a feature action plus challenge, high-score and score-badge follow-ups."""
        opts = options or AwardOptions()
        action = parse_action(action)
        if score is not None:
            check_score(score)
        if requirements_percentage is not None:
            check_score(requirements_percentage, "requirements_percentage")

        result = await self.award_xp(user_id, action, opts)
        activity = ActivityResult(**result.model_dump())

        challenge = await self.record_challenge_progress(user_id, action)
        if challenge.completed_challenge is not None:
            activity.challenge_completed = challenge.completed_challenge
            activity.xp_awarded += challenge.xp_awarded

        if score is not None:
            kind = score_kind_for_action(action)
            high = await self.update_high_score(user_id, kind, score)
            activity.high_score = high
            if high.is_new_high_score:
                bonus = await self.award_xp(
                    user_id,
                    XPAction.HIGH_SCORE,
                    AwardOptions(
                        description=f"New {kind.value} high score: {score}!",
                        reference_type=opts.reference_type,
                        reference_id=opts.reference_id,
                        check_badges=False,
                        update_streak=False,
                    ),
                )
                activity.xp_awarded += bonus.xp_awarded

            score_badges = await self._evaluate_badges_isolated(
                user_id,
                action,
                BadgeContext(
                    score=score,
                    improvement=improvement,
                    requirements_percentage=requirements_percentage,
                    reference_type=opts.reference_type,
                    reference_id=opts.reference_id,
                ),
            )
            activity.new_badges.extend(BadgeOut.from_definition(b) for b in score_badges)

        progress = await self.ledger.get_progress(user_id)
        if progress is not None:
            activity.total_xp = progress.total_xp
            activity.new_level = progress.current_level
            activity.leveled_up = progress.current_level > activity.previous_level
        return activity

    async def try_record_activity(
        self,
        user_id: uuid.UUID,
        action: XPAction | str,
        **kwargs: Any,
    ) -> ActivityResult | None:
        """``record_activity`` for feature routes: a failure degrades to None.

        A failure rolls the activity back to a savepoint. Streak and badge
        failures are absorbed inside ``award_xp``, so only a failed XP write
        lands here. Catalog errors still propagate.
        """
        try:
            async with self.db.begin_nested():
                return await self.record_activity(user_id, action, **kwargs)
        except CatalogLookupError:
            raise
        except (ProgressionError, SQLAlchemyError) as exc:
            logger.warning(
                "progression.degraded",
                user_id=str(user_id),
                action=str(action),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

    # ── Reads ──────────────────────────────────────────────────────────────────

    async def get_dashboard(self, user_id: uuid.UUID) -> DashboardSnapshot:
        """Read-only snapshot. A user with no row yet gets a zeroed level-1 view."""
        progress = await self.ledger.get_progress(user_id)
        if progress is None:
            progress = _blank_progress(user_id)

        current = levels.get_level(levels.level_for_xp(progress.total_xp))
        upcoming = levels.next_level(current.level)

        recent_xp = await self.ledger.recent_transactions(user_id, settings.DASHBOARD_RECENT_XP_LIMIT)
        user_badges = await self.get_user_badges(user_id)

        return DashboardSnapshot(
            user=UserProgressOut.model_validate(progress),
            current_level=LevelOut.from_definition(current),
            next_level=LevelOut.from_definition(upcoming) if upcoming else None,
            xp_to_next_level=levels.xp_to_next_level(progress.total_xp),
            progress_percent=levels.progress_percent(progress.total_xp),
            recent_xp=[XPTransactionOut.model_validate(t) for t in recent_xp],
            recent_badges=user_badges[: settings.DASHBOARD_RECENT_BADGE_LIMIT],
            total_badges=len(user_badges),
            daily_challenges=await self.get_daily_challenges(user_id),
        )

    async def get_user_badges(self, user_id: uuid.UUID) -> list[UserBadgeOut]:
        rows = await self.ledger.user_badges(user_id)
        return [
            UserBadgeOut(
                badge_id=row.badge_id,
                earned_at=row.earned_at,
                badge=BadgeOut.from_definition(get_badge(row.badge_id)),
            )
            for row in rows
        ]

    async def get_badges_with_status(self, user_id: uuid.UUID) -> BadgesResponse:
        earned = {ub.badge_id: ub.earned_at for ub in await self.get_user_badges(user_id)}
        statuses = [
            BadgeStatusOut(
                **BadgeOut.from_definition(badge).model_dump(),
                earned=badge.id in earned,
                earned_at=earned.get(badge.id),
            )
            for badge in BADGES
        ]
        grouped = {
            category: [s for s in statuses if s.category is category]
            for category in BadgeCategory
        }
        return BadgesResponse(
            badges=statuses,
            grouped=grouped,
            total_badges=len(BADGES),
            earned_count=len(earned),
        )

    async def get_leaderboard(self, user_id: uuid.UUID, limit: int | None = None) -> LeaderboardResponse:
        size = settings.LEADERBOARD_DEFAULT_LIMIT if limit is None else limit
        size = max(1, min(size, settings.LEADERBOARD_MAX_LIMIT))

        top = await self.ledger.top_users(size)
        entries = [
            LeaderboardEntry(
                rank=i + 1,
                user_id=row.user_id,
                total_xp=row.total_xp,
                current_level=row.current_level,
            )
            for i, row in enumerate(top)
        ]

        mine = await self.ledger.get_progress(user_id)
        user_xp = mine.total_xp if mine else 0
        user_level = mine.current_level if mine else levels.MIN_LEVEL
        rank = next((e.rank for e in entries if e.user_id == user_id), 0)
        if rank == 0:
            rank = await self.ledger.users_ahead_of(user_xp) + 1

        return LeaderboardResponse(
            leaderboard=entries, user_rank=rank, user_xp=user_xp, user_level=user_level
        )

    @staticmethod
    def get_levels() -> list[LevelOut]:
        return [LevelOut.from_definition(lvl) for lvl in levels.LEVELS]


def _blank_progress(user_id: uuid.UUID) -> UserProgress:
    """Transient, never-added row with every counter at its starting value."""
    return UserProgress(
        user_id=user_id,
        total_xp=0,
        current_level=levels.MIN_LEVEL,
        current_streak=0,
        longest_streak=0,
        last_activity_date=None,
        highest_prompt_score=0,
        highest_audit_score=0,
        total_prompts_analyzed=0,
        total_disclosures_generated=0,
        total_audits_completed=0,
        total_research_queries=0,
        total_papers_saved=0,
        total_grammar_checks=0,
    )
