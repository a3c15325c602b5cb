"""Gamification models: per-user aggregate, XP ledger, badges, daily challenges."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from progression.models.base import BaseModel, TimestampedModel


class UserProgress(BaseModel):
    """One aggregate row per user. Written only through ProgressLedger."""

    __tablename__ = "user_progress"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    total_xp: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    # always level_for_xp(total_xp); written in the same statement as total_xp
    current_level: Mapped[int] = mapped_column(Integer, default=1, server_default="1", nullable=False)
    current_streak: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    last_activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    highest_prompt_score: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    highest_audit_score: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)

    total_prompts_analyzed: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    total_disclosures_generated: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    total_audits_completed: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    total_research_queries: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    total_papers_saved: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    total_grammar_checks: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)


class XPTransaction(TimestampedModel):
    """Append-only ledger entry. sum(xp_amount) per user == UserProgress.total_xp."""

    __tablename__ = "xp_transactions"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    xp_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)

    __table_args__ = (
        Index("ix_xp_transactions_user_created", "user_id", "created_at"),
    )


class UserBadge(TimestampedModel):
    """A badge earned by a user. badge_id is a slug from the static catalog."""

    __tablename__ = "user_badges"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    badge_id: Mapped[str] = mapped_column(String(100), nullable=False)
    trigger_reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    trigger_reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="uq_user_badge"),
    )

    @property
    def earned_at(self) -> datetime:
        return self.created_at


class DailyChallenge(TimestampedModel):
    """A quota challenge active for one UTC calendar day."""

    __tablename__ = "daily_challenges"

    active_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    challenge_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_action: Mapped[str] = mapped_column(String(50), nullable=False)
    target_count: Mapped[int] = mapped_column(Integer, nullable=False)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "active_date", "target_action", "target_count", name="uq_daily_challenge_slot"
        ),
    )


class UserChallengeProgress(BaseModel):
    """Per-user counter for one daily challenge. completed flips false -> true once."""

    __tablename__ = "user_challenge_progress"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    challenge_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    current_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false", nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "challenge_id", name="uq_user_challenge"),
    )
