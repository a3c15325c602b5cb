"""create_progression_tables

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision: str = "3f1a9c2e7b10"
down_revision: str | None = None
branch_labels = None
depends_on = None


def _id() -> sa.Column:
    return sa.Column("id", sa.Uuid(), primary_key=True, nullable=False)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )


def _counter(name: str, default: str = "0") -> sa.Column:
    return sa.Column(name, sa.Integer(), server_default=default, nullable=False)


def upgrade() -> None:
    # ── Per-user aggregate ────────────────────────────────────────────────────
    op.create_table(
        "user_progress",
        _id(),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        _counter("total_xp"),
        _counter("current_level", "1"),
        _counter("current_streak"),
        _counter("longest_streak"),
        sa.Column("last_activity_date", sa.Date(), nullable=True),
        _counter("highest_prompt_score"),
        _counter("highest_audit_score"),
        _counter("total_prompts_analyzed"),
        _counter("total_disclosures_generated"),
        _counter("total_audits_completed"),
        _counter("total_research_queries"),
        _counter("total_papers_saved"),
        _counter("total_grammar_checks"),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("user_id"),
    )

    # ── XP ledger (append-only) ───────────────────────────────────────────────
    op.create_table(
        "xp_transactions",
        _id(),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("xp_amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("reference_type", sa.String(50), nullable=True),
        sa.Column("reference_id", sa.String(100), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_xp_transactions_user_created", "xp_transactions", ["user_id", "created_at"])

    # ── Badges ────────────────────────────────────────────────────────────────
    op.create_table(
        "user_badges",
        _id(),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("badge_id", sa.String(100), nullable=False),
        sa.Column("trigger_reference_type", sa.String(50), nullable=True),
        sa.Column("trigger_reference_id", sa.String(100), nullable=True),
        _created_at(),
        sa.UniqueConstraint("user_id", "badge_id", name="uq_user_badge"),
    )
    op.create_index("ix_user_badges_user_id", "user_badges", ["user_id"])

    # ── Daily challenges ──────────────────────────────────────────────────────
    op.create_table(
        "daily_challenges",
        _id(),
        sa.Column("active_date", sa.Date(), nullable=False),
        sa.Column("challenge_type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("target_action", sa.String(50), nullable=False),
        sa.Column("target_count", sa.Integer(), nullable=False),
        sa.Column("xp_reward", sa.Integer(), nullable=False),
        _created_at(),
        sa.UniqueConstraint(
            "active_date", "target_action", "target_count", name="uq_daily_challenge_slot"
        ),
    )
    op.create_index("ix_daily_challenges_active_date", "daily_challenges", ["active_date"])

    op.create_table(
        "user_challenge_progress",
        _id(),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("challenge_id", sa.Uuid(), nullable=False),
        _counter("current_count"),
        sa.Column("completed", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("user_id", "challenge_id", name="uq_user_challenge"),
    )
    op.create_index("ix_user_challenge_progress_user_id", "user_challenge_progress", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_user_challenge_progress_user_id", table_name="user_challenge_progress")
    op.drop_table("user_challenge_progress")
    op.drop_index("ix_daily_challenges_active_date", table_name="daily_challenges")
    op.drop_table("daily_challenges")
    op.drop_index("ix_user_badges_user_id", table_name="user_badges")
    op.drop_table("user_badges")
    op.drop_index("ix_xp_transactions_user_created", table_name="xp_transactions")
    op.drop_table("xp_transactions")
    op.drop_table("user_progress")
