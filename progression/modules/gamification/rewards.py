"""Fixed XP reward table and the action -> lifetime counter mapping."""

from __future__ import annotations

from progression.core.errors import InvalidInputError
from progression.models.enums import ScoreKind, XPAction

XP_REWARDS: dict[XPAction, int] = {
    XPAction.PROMPT_ANALYZE: 10,
    XPAction.DISCLOSURE_GENERATE: 15,
    XPAction.AUDIT_COMPLETE: 20,
    XPAction.AUDIT_IMPROVE: 25,
    XPAction.RESEARCH_QUERY: 5,
    XPAction.PAPER_SAVE: 5,
    XPAction.GRAMMAR_CHECK: 3,
    XPAction.DAILY_CHALLENGE: 50,
    XPAction.HIGH_SCORE: 100,
    XPAction.STREAK_BONUS: 10,
    XPAction.BADGE_EARNED: 0,  # per-badge amount, always passed as an override
}

# UserProgress column bumped by one on every award for the action
ACTION_COUNTERS: dict[XPAction, str] = {
    XPAction.PROMPT_ANALYZE: "total_prompts_analyzed",
    XPAction.DISCLOSURE_GENERATE: "total_disclosures_generated",
    XPAction.AUDIT_COMPLETE: "total_audits_completed",
    XPAction.AUDIT_IMPROVE: "total_audits_completed",
    XPAction.RESEARCH_QUERY: "total_research_queries",
    XPAction.PAPER_SAVE: "total_papers_saved",
    XPAction.GRAMMAR_CHECK: "total_grammar_checks",
}

COUNTER_FIELDS: frozenset[str] = frozenset(ACTION_COUNTERS.values())

# actions whose score counts towards a single-action score badge
SCORE_TRIGGER_ACTIONS: dict[ScoreKind, frozenset[XPAction]] = {
    ScoreKind.PROMPT: frozenset({XPAction.PROMPT_ANALYZE}),
    ScoreKind.AUDIT: frozenset({XPAction.AUDIT_COMPLETE, XPAction.AUDIT_IMPROVE}),
}

HIGH_SCORE_FIELDS: dict[ScoreKind, str] = {
    ScoreKind.PROMPT: "highest_prompt_score",
    ScoreKind.AUDIT: "highest_audit_score",
}

MIN_SCORE = 0
MAX_SCORE = 100


def parse_action(action: XPAction | str) -> XPAction:
    try:
        return XPAction(action)
    except ValueError:
        raise InvalidInputError(f"Unknown action '{action}'", action=str(action)) from None


def parse_score_kind(kind: ScoreKind | str) -> ScoreKind:
    try:
        return ScoreKind(kind)
    except ValueError:
        raise InvalidInputError(f"Unknown score kind '{kind}'", score_kind=str(kind)) from None


def check_score(score: int, field: str = "score") -> int:
    if isinstance(score, bool) or not isinstance(score, int):
        raise InvalidInputError(f"{field} must be an integer", **{field: score})
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise InvalidInputError(
            f"{field} must be between {MIN_SCORE} and {MAX_SCORE}", **{field: score}
        )
    return score


def score_kind_for_action(action: XPAction) -> ScoreKind:
    """Prompt analyses carry prompt scores; every other scored action is an audit."""
    return ScoreKind.PROMPT if action is XPAction.PROMPT_ANALYZE else ScoreKind.AUDIT
