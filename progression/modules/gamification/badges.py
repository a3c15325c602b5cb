"""Badge catalog and unlock predicates.

Each badge carries exactly one unlock condition from a closed set of frozen
dataclasses. ``badge_unlocked`` dispatches on the condition type and has no
side effects; awarding is the service's job.
"""

from __future__ import annotations

from dataclasses import dataclass

from progression.core.errors import CatalogLookupError
from progression.models.enums import BadgeCategory, ScoreKind, XPAction
from progression.models.gamification import UserProgress
from progression.modules.gamification.rewards import (
    COUNTER_FIELDS,
    HIGH_SCORE_FIELDS,
    SCORE_TRIGGER_ACTIONS,
)


# ── Unlock conditions ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ActionCount:
    """Lifetime counter (a UserProgress column) reached ``count``."""

    counter: str
    count: int


@dataclass(frozen=True)
class ActionScore:
    """The triggering action itself scored at least ``min_score``."""

    kind: ScoreKind
    min_score: int


@dataclass(frozen=True)
class HighScore:
    """Lifetime high score of ``kind`` is at least ``min_score``."""

    kind: ScoreKind
    min_score: int


@dataclass(frozen=True)
class ScoreImprovement:
    min_improvement: int


@dataclass(frozen=True)
class RequirementsMet:
    percentage: int


@dataclass(frozen=True)
class StreakDays:
    days: int


@dataclass(frozen=True)
class LevelReached:
    level: int


@dataclass(frozen=True)
class TotalXP:
    amount: int


UnlockCondition = (
    ActionCount
    | ActionScore
    | HighScore
    | ScoreImprovement
    | RequirementsMet
    | StreakDays
    | LevelReached
    | TotalXP
)


@dataclass(frozen=True)
class BadgeContext:
    """Facts about the triggering action that are not stored on UserProgress."""

    score: int | None = None
    improvement: int | None = None
    requirements_percentage: int | None = None
    reference_type: str | None = None
    reference_id: str | None = None


@dataclass(frozen=True)
class BadgeDefinition:
    id: str
    name: str
    description: str
    category: BadgeCategory
    icon: str
    xp_reward: int
    condition: UnlockCondition


# ── Catalog ──────────────────────────────────────────────────────────────────

BADGES: tuple[BadgeDefinition, ...] = (
    # skill
    BadgeDefinition("first_prompt", "First Prompt", "Analyzed your first prompt.",
                    BadgeCategory.SKILL, "💡", 10, ActionCount("total_prompts_analyzed", 1)),
    BadgeDefinition("prompt_pro", "Prompt Pro", "Analyzed 25 prompts.",
                    BadgeCategory.SKILL, "🧠", 50, ActionCount("total_prompts_analyzed", 25)),
    BadgeDefinition("sharp_prompt", "Sharp Prompt", "Wrote a prompt scoring 80 or more.",
                    BadgeCategory.SKILL, "🎯", 25, ActionScore(ScoreKind.PROMPT, 80)),
    BadgeDefinition("prompt_virtuoso", "Prompt Virtuoso", "Reached a best prompt score of 95.",
                    BadgeCategory.SKILL, "🏹", 75, HighScore(ScoreKind.PROMPT, 95)),
    BadgeDefinition("first_disclosure", "Open Book", "Generated your first AI disclosure.",
                    BadgeCategory.SKILL, "📜", 10, ActionCount("total_disclosures_generated", 1)),
    BadgeDefinition("transparency_champion", "Transparency Champion", "Generated 10 AI disclosures.",
                    BadgeCategory.SKILL, "🔍", 50, ActionCount("total_disclosures_generated", 10)),
    BadgeDefinition("first_audit", "Self Check", "Completed your first assignment audit.",
                    BadgeCategory.SKILL, "📝", 10, ActionCount("total_audits_completed", 1)),
    BadgeDefinition("audit_ace", "Audit Ace", "Scored 90 or more on an assignment audit.",
                    BadgeCategory.SKILL, "🅰️", 50, ActionScore(ScoreKind.AUDIT, 90)),
    BadgeDefinition("consistent_auditor", "Consistent Auditor", "Reached a best audit score of 80.",
                    BadgeCategory.SKILL, "📈", 30, HighScore(ScoreKind.AUDIT, 80)),
    BadgeDefinition("comeback", "Comeback", "Improved an audit score by 10 points or more.",
                    BadgeCategory.SKILL, "🚀", 40, ScoreImprovement(10)),
    BadgeDefinition("brief_nailed", "Brief Nailed", "Met every requirement of an assignment brief.",
                    BadgeCategory.SKILL, "✅", 40, RequirementsMet(100)),
    BadgeDefinition("curious_mind", "Curious Mind", "Ran your first research query.",
                    BadgeCategory.SKILL, "🔎", 10, ActionCount("total_research_queries", 1)),
    BadgeDefinition("bookworm", "Bookworm", "Saved 10 papers to your library.",
                    BadgeCategory.SKILL, "📚", 30, ActionCount("total_papers_saved", 10)),
    BadgeDefinition("grammar_guardian", "Grammar Guardian", "Ran 25 grammar checks.",
                    BadgeCategory.SKILL, "✍️", 30, ActionCount("total_grammar_checks", 25)),
    # streak
    BadgeDefinition("streak_3", "Warming Up", "Kept a 3-day activity streak.",
                    BadgeCategory.STREAK, "🔥", 15, StreakDays(3)),
    BadgeDefinition("streak_7", "Week Warrior", "Kept a 7-day activity streak.",
                    BadgeCategory.STREAK, "⚡", 50, StreakDays(7)),
    BadgeDefinition("streak_30", "Unstoppable", "Kept a 30-day activity streak.",
                    BadgeCategory.STREAK, "🌋", 200, StreakDays(30)),
    # milestone
    BadgeDefinition("xp_1000", "Thousand Club", "Earned 1,000 XP.",
                    BadgeCategory.MILESTONE, "💯", 25, TotalXP(1000)),
    BadgeDefinition("level_5", "Halfway There", "Reached level 5.",
                    BadgeCategory.MILESTONE, "⭐", 50, LevelReached(5)),
    BadgeDefinition("level_10", "AI Literacy Master", "Reached the maximum level.",
                    BadgeCategory.MILESTONE, "👑", 200, LevelReached(10)),
    # special
    BadgeDefinition("prompt_centurion", "Prompt Centurion", "Analyzed 100 prompts.",
                    BadgeCategory.SPECIAL, "🏛️", 150, ActionCount("total_prompts_analyzed", 100)),
)

_BY_ID = {badge.id: badge for badge in BADGES}


def _check_catalog() -> None:
    if len(_BY_ID) != len(BADGES):
        raise CatalogLookupError("Duplicate badge id in catalog")
    for badge in BADGES:
        if badge.xp_reward < 0:
            raise CatalogLookupError(f"Badge {badge.id} has a negative reward", badge_id=badge.id)
        if isinstance(badge.condition, ActionCount) and badge.condition.counter not in COUNTER_FIELDS:
            raise CatalogLookupError(
                f"Badge {badge.id} counts unknown field {badge.condition.counter}",
                badge_id=badge.id,
            )


_check_catalog()


def get_badge(badge_id: str) -> BadgeDefinition:
    try:
        return _BY_ID[badge_id]
    except KeyError:
        raise CatalogLookupError(f"Unknown badge '{badge_id}'", badge_id=badge_id) from None


# ── Evaluation ───────────────────────────────────────────────────────────────


def _at_least(value: int | None, threshold: int) -> bool:
    return value is not None and value >= threshold


def badge_unlocked(
    condition: UnlockCondition,
    progress: UserProgress,
    trigger_action: XPAction,
    context: BadgeContext,
) -> bool:
    """Pure predicate over the post-update aggregate and the trigger context."""
    if isinstance(condition, ActionCount):
        return getattr(progress, condition.counter) >= condition.count
    if isinstance(condition, ActionScore):
        return (
            trigger_action in SCORE_TRIGGER_ACTIONS[condition.kind]
            and _at_least(context.score, condition.min_score)
        )
    if isinstance(condition, HighScore):
        return getattr(progress, HIGH_SCORE_FIELDS[condition.kind]) >= condition.min_score
    if isinstance(condition, ScoreImprovement):
        return _at_least(context.improvement, condition.min_improvement)
    if isinstance(condition, RequirementsMet):
        return _at_least(context.requirements_percentage, condition.percentage)
    if isinstance(condition, StreakDays):
        return progress.current_streak >= condition.days
    if isinstance(condition, LevelReached):
        return progress.current_level >= condition.level
    if isinstance(condition, TotalXP):
        return progress.total_xp >= condition.amount
    raise CatalogLookupError(f"Unhandled unlock condition {type(condition).__name__}")
