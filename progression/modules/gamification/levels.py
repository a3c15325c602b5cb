"""Static level table and the pure functions that derive a level from XP."""

from __future__ import annotations

import math
from dataclasses import dataclass

from sqlalchemy import case
from sqlalchemy.sql.elements import ColumnElement

from progression.core.errors import CatalogLookupError, InvalidInputError


@dataclass(frozen=True)
class LevelDefinition:
    level: int
    xp_threshold: int
    title: str
    unlock_description: str


LEVELS: tuple[LevelDefinition, ...] = (
    LevelDefinition(1, 0, "Curious Beginner", "Start analyzing prompts and generating disclosures."),
    LevelDefinition(2, 100, "Prompt Apprentice", "Unlocks prompt history insights."),
    LevelDefinition(3, 300, "Honest Author", "Unlocks custom disclosure templates."),
    LevelDefinition(4, 600, "Research Explorer", "Unlocks the saved-paper library."),
    LevelDefinition(5, 1000, "Integrity Advocate", "Unlocks assignment audit comparisons."),
    LevelDefinition(6, 1500, "Skilled Collaborator", "Unlocks advanced prompt coaching tips."),
    LevelDefinition(7, 2500, "Citation Crafter", "Unlocks bulk citation export."),
    LevelDefinition(8, 4000, "Academic Strategist", "Unlocks weekly progress reports."),
    LevelDefinition(9, 6000, "Responsible Scholar", "Unlocks the scholar profile frame."),
    LevelDefinition(10, 10000, "AI Literacy Master", "Maximum level. XP keeps accumulating."),
)

MIN_LEVEL = LEVELS[0].level
MAX_LEVEL = LEVELS[-1].level

_BY_LEVEL = {lvl.level: lvl for lvl in LEVELS}


def _check_table() -> None:
    thresholds = [lvl.xp_threshold for lvl in LEVELS]
    if thresholds[0] != 0 or any(b <= a for a, b in zip(thresholds, thresholds[1:])):
        raise CatalogLookupError("Level thresholds must start at 0 and strictly increase")
    if [lvl.level for lvl in LEVELS] != list(range(1, len(LEVELS) + 1)):
        raise CatalogLookupError("Levels must be numbered 1..N without gaps")


_check_table()


def level_for_xp(xp: int) -> int:
    """Highest level whose threshold is <= xp."""
    if xp < 0:
        raise InvalidInputError("XP cannot be negative", xp=xp)
    for lvl in reversed(LEVELS):
        if xp >= lvl.xp_threshold:
            return lvl.level
    return MIN_LEVEL


def get_level(level: int) -> LevelDefinition:
    try:
        return _BY_LEVEL[level]
    except KeyError:
        raise CatalogLookupError(f"Unknown level {level}", level=level) from None


def next_level(level: int) -> LevelDefinition | None:
    get_level(level)
    return _BY_LEVEL.get(level + 1)


def xp_to_next_level(total_xp: int) -> int:
    """XP still needed for the next level; 0 at max level."""
    upcoming = next_level(level_for_xp(total_xp))
    if upcoming is None:
        return 0
    return upcoming.xp_threshold - total_xp


def progress_percent(total_xp: int) -> int:
    """Percent through the current level, rounded half-up, 100 at max level."""
    current = get_level(level_for_xp(total_xp))
    upcoming = next_level(current.level)
    if upcoming is None:
        return 100
    span = upcoming.xp_threshold - current.xp_threshold
    pct = math.floor(100 * (total_xp - current.xp_threshold) / span + 0.5)
    return max(0, min(100, pct))


def level_case(xp_expr: ColumnElement[int]) -> ColumnElement[int]:
    """SQL CASE that derives the level from an XP expression inside an UPDATE."""
    whens = [(xp_expr >= lvl.xp_threshold, lvl.level) for lvl in reversed(LEVELS[1:])]
    return case(*whens, else_=MIN_LEVEL)
