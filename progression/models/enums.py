"""Enumerations shared by the progression models and API."""

import enum


class XPAction(str, enum.Enum):
    PROMPT_ANALYZE = "prompt_analyze"
    DISCLOSURE_GENERATE = "disclosure_generate"
    AUDIT_COMPLETE = "audit_complete"
    AUDIT_IMPROVE = "audit_improve"
    RESEARCH_QUERY = "research_query"
    PAPER_SAVE = "paper_save"
    GRAMMAR_CHECK = "grammar_check"
    DAILY_CHALLENGE = "daily_challenge"
    HIGH_SCORE = "high_score"
    STREAK_BONUS = "streak_bonus"
    BADGE_EARNED = "badge_earned"


class ScoreKind(str, enum.Enum):
    PROMPT = "prompt"
    AUDIT = "audit"


class BadgeCategory(str, enum.Enum):
    SKILL = "skill"
    STREAK = "streak"
    MILESTONE = "milestone"
    SPECIAL = "special"
