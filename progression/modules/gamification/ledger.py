"""Atomic storage primitives for the progression aggregate.

Every write to ``user_progress`` goes through ``ProgressLedger`` and is a
single statement: an arithmetic ``UPDATE ... SET x = x + :n``, a conditional
``UPDATE ... WHERE <expected state>``, or an ``INSERT ... ON CONFLICT DO
NOTHING``. Nothing here reads a value, computes in Python and writes it back.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

import structlog
from sqlalchemy import Select, case, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from progression.core.errors import StorageError
from progression.models.base import utcnow
from progression.models.enums import ScoreKind
from progression.models.gamification import (
    DailyChallenge,
    UserBadge,
    UserChallengeProgress,
    UserProgress,
    XPTransaction,
)
from progression.modules.gamification.levels import level_case
from progression.modules.gamification.rewards import COUNTER_FIELDS, HIGH_SCORE_FIELDS
from progression.modules.gamification.streaks import StreakOutcome, StreakTransition

logger = structlog.get_logger()

_NO_SYNC = {"synchronize_session": False}


def dialect_insert(session: AsyncSession | Session, model: type):
    """Dialect-specific INSERT supporting ON CONFLICT DO NOTHING."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise StorageError(f"Insert-if-absent is not supported on {dialect}", dialect=dialect)


def _matches(column: Any, expected: Any) -> Any:
    return column.is_(None) if expected is None else column == expected


class ProgressLedger:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ── Aggregate row ─────────────────────────────────────────────────────────

    async def ensure_progress(self, user_id: uuid.UUID) -> None:
        """Create the aggregate row if it does not exist yet."""
        await self.db.execute(
            dialect_insert(self.db, UserProgress)
            .values(id=uuid.uuid4(), user_id=user_id)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )

    def _progress_query(self, user_id: uuid.UUID) -> Select:
        return (
            select(UserProgress)
            .where(UserProgress.user_id == user_id)
            .execution_options(populate_existing=True)
        )

    async def get_progress(self, user_id: uuid.UUID) -> UserProgress | None:
        """Fresh snapshot; bypasses stale identity-map copies left by bulk UPDATEs."""
        result = await self.db.execute(self._progress_query(user_id))
        return result.scalar_one_or_none()

    async def add_xp(
        self,
        user_id: uuid.UUID,
        amount: int,
        counter: str | None = None,
    ) -> tuple[int, int]:
        """Atomically add ``amount`` XP (and bump ``counter``). Returns (total_xp, level).

        ``current_level`` is recomputed in the same statement from the new total.
        """
        if counter is not None and counter not in COUNTER_FIELDS:
            raise StorageError(f"Unknown progress counter '{counter}'", counter=counter)

        new_total = UserProgress.total_xp + amount
        values: dict[str, Any] = {
            "total_xp": new_total,
            "current_level": level_case(new_total),
            "updated_at": utcnow(),
        }
        if counter is not None:
            values[counter] = getattr(UserProgress, counter) + 1

        result = await self.db.execute(
            update(UserProgress)
            .where(UserProgress.user_id == user_id)
            .values(**values)
            .returning(UserProgress.total_xp, UserProgress.current_level)
            .execution_options(**_NO_SYNC)
        )
        row = result.one_or_none()
        if row is None:
            raise StorageError("Progress row missing during XP increment", user_id=str(user_id))
        return row.total_xp, row.current_level

    async def append_transaction(
        self,
        user_id: uuid.UUID,
        action: str,
        amount: int,
        description: str,
        reference_type: str | None = None,
        reference_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> XPTransaction:
        entry = XPTransaction(
            user_id=user_id,
            action=action,
            xp_amount=amount,
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            metadata_=metadata or {},
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    # ── Streak ────────────────────────────────────────────────────────────────

    async def apply_streak(
        self,
        user_id: uuid.UUID,
        expected_last_activity: date | None,
        transition: StreakTransition,
        today: date,
    ) -> tuple[int, int] | None:
        """Apply a streak transition only if last_activity_date is still the value read.

        Returns (current_streak, longest_streak), or None when another request
        already moved the row on.
        """
        if transition.outcome is StreakOutcome.CONTINUED:
            streak = UserProgress.current_streak + 1
            values: dict[str, Any] = {
                "current_streak": streak,
                "longest_streak": case(
                    (streak > UserProgress.longest_streak, streak),
                    else_=UserProgress.longest_streak,
                ),
            }
        else:
            values = {
                "current_streak": 1,
                "longest_streak": case(
                    (UserProgress.longest_streak < 1, 1),
                    else_=UserProgress.longest_streak,
                ),
            }
        values["last_activity_date"] = today
        values["updated_at"] = utcnow()

        result = await self.db.execute(
            update(UserProgress)
            .where(
                UserProgress.user_id == user_id,
                _matches(UserProgress.last_activity_date, expected_last_activity),
            )
            .values(**values)
            .returning(UserProgress.current_streak, UserProgress.longest_streak)
            .execution_options(**_NO_SYNC)
        )
        row = result.one_or_none()
        return None if row is None else (row.current_streak, row.longest_streak)

    # ── High scores ───────────────────────────────────────────────────────────

    async def raise_high_score(
        self, user_id: uuid.UUID, kind: ScoreKind, score: int
    ) -> tuple[bool, int]:
        """Compare-and-set the high score. Returns (raised, previous_high_score)."""
        column = getattr(UserProgress, HIGH_SCORE_FIELDS[kind])
        while True:
            result = await self.db.execute(
                select(column).where(UserProgress.user_id == user_id)
            )
            previous = result.scalar_one_or_none()
            if previous is None:
                raise StorageError("Progress row missing during high score update", user_id=str(user_id))
            if score <= previous:
                return False, previous
            swapped = await self.db.execute(
                update(UserProgress)
                .where(UserProgress.user_id == user_id, column == previous)
                .values({column.key: score, "updated_at": utcnow()})
                .returning(UserProgress.id)
                .execution_options(**_NO_SYNC)
            )
            if swapped.one_or_none() is not None:
                return True, previous
            # someone else raised it first; re-read and compare again
            logger.debug("high_score.cas_retry", user_id=str(user_id), kind=kind.value)

    # ── Badges ────────────────────────────────────────────────────────────────

    async def earned_badge_ids(self, user_id: uuid.UUID) -> set[str]:
        result = await self.db.execute(
            select(UserBadge.badge_id).where(UserBadge.user_id == user_id)
        )
        return set(result.scalars().all())

    async def insert_badge_if_absent(
        self,
        user_id: uuid.UUID,
        badge_id: str,
        reference_type: str | None = None,
        reference_id: str | None = None,
    ) -> bool:
        """True only for the caller whose insert created the (user, badge) row."""
        result = await self.db.execute(
            dialect_insert(self.db, UserBadge)
            .values(
                id=uuid.uuid4(),
                user_id=user_id,
                badge_id=badge_id,
                trigger_reference_type=reference_type,
                trigger_reference_id=reference_id,
                created_at=utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["user_id", "badge_id"])
            .returning(UserBadge.id)
        )
        return result.scalar_one_or_none() is not None

    # ── Daily challenges ──────────────────────────────────────────────────────

    async def challenges_for(self, day: date, action: str | None = None) -> list[DailyChallenge]:
        stmt = select(DailyChallenge).where(DailyChallenge.active_date == day)
        if action is not None:
            stmt = stmt.where(DailyChallenge.target_action == action)
        result = await self.db.execute(stmt.order_by(DailyChallenge.xp_reward, DailyChallenge.title))
        return list(result.scalars().all())

    async def ensure_challenge_progress(self, user_id: uuid.UUID, challenge_id: uuid.UUID) -> None:
        await self.db.execute(
            dialect_insert(self.db, UserChallengeProgress)
            .values(id=uuid.uuid4(), user_id=user_id, challenge_id=challenge_id)
            .on_conflict_do_nothing(index_elements=["user_id", "challenge_id"])
        )

    async def bump_challenge(
        self, user_id: uuid.UUID, challenge: DailyChallenge
    ) -> int | None:
        """Add one to an open challenge counter, never past the target. Returns the new count."""
        result = await self.db.execute(
            update(UserChallengeProgress)
            .where(
                UserChallengeProgress.user_id == user_id,
                UserChallengeProgress.challenge_id == challenge.id,
                UserChallengeProgress.completed.is_(False),
                UserChallengeProgress.current_count < challenge.target_count,
            )
            .values(current_count=UserChallengeProgress.current_count + 1, updated_at=utcnow())
            .returning(UserChallengeProgress.current_count)
            .execution_options(**_NO_SYNC)
        )
        return result.scalar_one_or_none()

    async def complete_challenge(
        self, user_id: uuid.UUID, challenge: DailyChallenge, now: datetime
    ) -> bool:
        """Flip completed false -> true. True only for the caller that flipped it."""
        result = await self.db.execute(
            update(UserChallengeProgress)
            .where(
                UserChallengeProgress.user_id == user_id,
                UserChallengeProgress.challenge_id == challenge.id,
                UserChallengeProgress.completed.is_(False),
                UserChallengeProgress.current_count >= challenge.target_count,
            )
            .values(completed=True, completed_at=now, updated_at=utcnow())
            .returning(UserChallengeProgress.id)
            .execution_options(**_NO_SYNC)
        )
        return result.scalar_one_or_none() is not None

    async def challenge_progress_for(
        self, user_id: uuid.UUID, challenge_ids: list[uuid.UUID]
    ) -> dict[uuid.UUID, UserChallengeProgress]:
        if not challenge_ids:
            return {}
        result = await self.db.execute(
            select(UserChallengeProgress)
            .where(
                UserChallengeProgress.user_id == user_id,
                UserChallengeProgress.challenge_id.in_(challenge_ids),
            )
            .execution_options(populate_existing=True)
        )
        return {row.challenge_id: row for row in result.scalars().all()}

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def recent_transactions(self, user_id: uuid.UUID, limit: int) -> list[XPTransaction]:
        result = await self.db.execute(
            select(XPTransaction)
            .where(XPTransaction.user_id == user_id)
            .order_by(XPTransaction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def ledger_total(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(XPTransaction.xp_amount), 0)).where(
                XPTransaction.user_id == user_id
            )
        )
        return int(result.scalar_one())

    async def user_badges(self, user_id: uuid.UUID) -> list[UserBadge]:
        result = await self.db.execute(
            select(UserBadge)
            .where(UserBadge.user_id == user_id)
            .order_by(UserBadge.created_at.desc())
        )
        return list(result.scalars().all())

    async def top_users(self, limit: int) -> list[UserProgress]:
        result = await self.db.execute(
            select(UserProgress)
            .order_by(UserProgress.total_xp.desc(), UserProgress.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def users_ahead_of(self, total_xp: int) -> int:
        result = await self.db.execute(
            select(func.count(UserProgress.id)).where(UserProgress.total_xp > total_xp)
        )
        return int(result.scalar_one())
