"""Gamification Pydantic schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from progression.models.enums import BadgeCategory
from progression.modules.gamification.badges import BadgeDefinition
from progression.modules.gamification.levels import LevelDefinition


# ── Catalog ────────────────────────────────────────────────────────────────────


class LevelOut(BaseModel):
    level: int
    xp_threshold: int
    title: str
    unlock_description: str

    @classmethod
    def from_definition(cls, definition: LevelDefinition) -> LevelOut:
        return cls(
            level=definition.level,
            xp_threshold=definition.xp_threshold,
            title=definition.title,
            unlock_description=definition.unlock_description,
        )


class BadgeOut(BaseModel):
    id: str
    name: str
    description: str
    category: BadgeCategory
    icon: str
    xp_reward: int

    @classmethod
    def from_definition(cls, badge: BadgeDefinition) -> BadgeOut:
        return cls(
            id=badge.id,
            name=badge.name,
            description=badge.description,
            category=badge.category,
            icon=badge.icon,
            xp_reward=badge.xp_reward,
        )


class BadgeStatusOut(BadgeOut):
    earned: bool
    earned_at: datetime | None = None


class BadgesResponse(BaseModel):
    badges: list[BadgeStatusOut]
    grouped: dict[BadgeCategory, list[BadgeStatusOut]]
    total_badges: int
    earned_count: int


# ── Award results ──────────────────────────────────────────────────────────────


class StreakUpdate(BaseModel):
    current_streak: int
    streak_broken: bool
    bonus_xp: int


class AwardResult(BaseModel):
    xp_awarded: int
    total_xp: int
    previous_level: int
    new_level: int
    leveled_up: bool
    new_badges: list[BadgeOut] = Field(default_factory=list)
    streak_update: StreakUpdate | None = None


class HighScoreResult(BaseModel):
    is_new_high_score: bool
    previous_high_score: int


class ChallengeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    active_date: date
    challenge_type: str
    title: str
    description: str | None = None
    target_action: str
    target_count: int
    xp_reward: int


class ChallengeProgressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    current_count: int
    completed: bool
    completed_at: datetime | None = None


class ChallengeWithProgress(ChallengeOut):
    progress: ChallengeProgressOut | None = None


class ChallengeProgressResult(BaseModel):
    completed_challenge: ChallengeOut | None = None
    xp_awarded: int = 0


class ActivityResult(AwardResult):
    """Award plus the follow-ups a feature route triggers in one call."""

    challenge_completed: ChallengeOut | None = None
    high_score: HighScoreResult | None = None


# ── Dashboard ──────────────────────────────────────────────────────────────────


class UserProgressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    total_xp: int
    current_level: int
    current_streak: int
    longest_streak: int
    last_activity_date: date | None = None
    highest_prompt_score: int
    highest_audit_score: int
    total_prompts_analyzed: int
    total_disclosures_generated: int
    total_audits_completed: int
    total_research_queries: int
    total_papers_saved: int
    total_grammar_checks: int


class XPTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    action: str
    xp_amount: int
    description: str | None = None
    reference_type: str | None = None
    reference_id: str | None = None
    created_at: datetime


class UserBadgeOut(BaseModel):
    badge_id: str
    earned_at: datetime
    badge: BadgeOut


class DashboardSnapshot(BaseModel):
    user: UserProgressOut
    current_level: LevelOut
    next_level: LevelOut | None = None
    xp_to_next_level: int
    progress_percent: int
    recent_xp: list[XPTransactionOut]
    recent_badges: list[UserBadgeOut]
    total_badges: int
    daily_challenges: list[ChallengeWithProgress]


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: uuid.UUID
    total_xp: int
    current_level: int


class LeaderboardResponse(BaseModel):
    leaderboard: list[LeaderboardEntry]
    user_rank: int
    user_xp: int
    user_level: int


# ── Requests ───────────────────────────────────────────────────────────────────


class AwardRequest(BaseModel):
    """Internal award call made by feature routes on the caller's behalf."""

    action: str
    custom_xp: int | None = Field(default=None, ge=1)
    description: str | None = Field(default=None, max_length=500)
    reference_type: str | None = Field(default=None, max_length=50)
    reference_id: str | None = Field(default=None, max_length=100)
    metadata: dict[str, Any] = Field(default_factory=dict)
    score: int | None = Field(default=None, ge=0, le=100)
    improvement: int | None = None
    requirements_percentage: int | None = Field(default=None, ge=0, le=100)
