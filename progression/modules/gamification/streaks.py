"""Daily activity streak state machine.

Transitions happen at most once per user per UTC calendar day:

- last activity today      -> no-op, no bonus
- last activity yesterday  -> streak + 1, longest = max(longest, streak), bonus
- anything else            -> streak = 1 (broken if there was a previous day), no bonus
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, timedelta

from progression.core.config import settings


class StreakOutcome(str, enum.Enum):
    ALREADY_COUNTED = "already_counted"
    CONTINUED = "continued"
    STARTED = "started"
    RESET = "reset"


@dataclass(frozen=True)
class StreakTransition:
    outcome: StreakOutcome
    current_streak: int
    longest_streak: int
    bonus_xp: int

    @property
    def changes_row(self) -> bool:
        return self.outcome is not StreakOutcome.ALREADY_COUNTED

    @property
    def streak_broken(self) -> bool:
        return self.outcome is StreakOutcome.RESET


def streak_bonus(streak_days: int) -> int:
    """Bonus for reaching ``streak_days`` by continuing a streak."""
    if streak_days < 2:
        return 0
    multiplier = settings.XP_STREAK_MILESTONE_MULTIPLIERS.get(streak_days, 1)
    return settings.XP_STREAK_BONUS_BASE * multiplier


def next_streak_state(
    last_activity: date | None,
    current_streak: int,
    longest_streak: int,
    today: date,
) -> StreakTransition:
    if last_activity == today:
        return StreakTransition(StreakOutcome.ALREADY_COUNTED, current_streak, longest_streak, 0)

    if last_activity == today - timedelta(days=1):
        streak = current_streak + 1
        return StreakTransition(
            StreakOutcome.CONTINUED,
            streak,
            max(longest_streak, streak),
            streak_bonus(streak),
        )

    # first-ever activity, a gap of two or more days, or a clock that went backwards
    outcome = StreakOutcome.STARTED if last_activity is None else StreakOutcome.RESET
    return StreakTransition(outcome, 1, max(longest_streak, 1), 0)
