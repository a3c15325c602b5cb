"""Daily challenge templates and per-day generation.

Challenges for a day are picked by rotating through the template pool from the
day's ordinal, so every process (API startup, Celery beat, a manual backfill)
produces the same set, and inserting them twice is a no-op.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from progression.core.config import settings
from progression.models.base import utcnow
from progression.models.enums import XPAction
from progression.models.gamification import DailyChallenge
from progression.modules.gamification.ledger import dialect_insert

logger = structlog.get_logger()


@dataclass(frozen=True)
class ChallengeTemplate:
    challenge_type: str
    title: str
    description: str
    target_action: XPAction
    target_count: int
    xp_reward: int


CHALLENGE_TEMPLATES: tuple[ChallengeTemplate, ...] = (
    ChallengeTemplate("prompt", "Prompt Sprint", "Analyze 3 prompts today.",
                      XPAction.PROMPT_ANALYZE, 3, 50),
    ChallengeTemplate("disclosure", "Transparent Today", "Generate an AI disclosure.",
                      XPAction.DISCLOSURE_GENERATE, 1, 30),
    ChallengeTemplate("research", "Research Dive", "Run 3 research queries.",
                      XPAction.RESEARCH_QUERY, 3, 40),
    ChallengeTemplate("grammar", "Polish Pass", "Run 3 grammar checks.",
                      XPAction.GRAMMAR_CHECK, 3, 30),
    ChallengeTemplate("audit", "Self-Audit", "Audit an assignment against its brief.",
                      XPAction.AUDIT_COMPLETE, 1, 50),
    ChallengeTemplate("library", "Library Builder", "Save 2 papers to your library.",
                      XPAction.PAPER_SAVE, 2, 30),
    ChallengeTemplate("prompt", "Prompt Marathon", "Analyze 5 prompts today.",
                      XPAction.PROMPT_ANALYZE, 5, 75),
    ChallengeTemplate("disclosure", "Disclosure Duo", "Generate 2 AI disclosures.",
                      XPAction.DISCLOSURE_GENERATE, 2, 50),
    ChallengeTemplate("grammar", "Grammar Grind", "Run 5 grammar checks.",
                      XPAction.GRAMMAR_CHECK, 5, 45),
)


def templates_for_day(day: date, per_day: int | None = None) -> list[ChallengeTemplate]:
    """Deterministic, distinct pick of ``per_day`` templates for ``day``."""
    count = settings.DAILY_CHALLENGES_PER_DAY if per_day is None else per_day
    count = max(0, min(count, len(CHALLENGE_TEMPLATES)))
    offset = (day.toordinal() * count) % len(CHALLENGE_TEMPLATES)
    return [
        CHALLENGE_TEMPLATES[(offset + i) % len(CHALLENGE_TEMPLATES)] for i in range(count)
    ]


def _rows(day: date, per_day: int | None) -> list[dict[str, Any]]:
    now = utcnow()
    return [
        {
            "id": uuid.uuid4(),
            "active_date": day,
            "challenge_type": tpl.challenge_type,
            "title": tpl.title,
            "description": tpl.description,
            "target_action": tpl.target_action.value,
            "target_count": tpl.target_count,
            "xp_reward": tpl.xp_reward,
            "created_at": now,
        }
        for tpl in templates_for_day(day, per_day)
    ]


def _insert_stmt(session: AsyncSession | Session, rows: list[dict[str, Any]]):
    return (
        dialect_insert(session, DailyChallenge)
        .values(rows)
        .on_conflict_do_nothing(
            index_elements=["active_date", "target_action", "target_count"]
        )
    )


async def ensure_daily_challenges(
    db: AsyncSession, day: date, per_day: int | None = None
) -> int:
    """Insert the day's challenges if absent (async API path). Returns rows requested."""
    rows = _rows(day, per_day)
    if rows:
        await db.execute(_insert_stmt(db, rows))
    logger.info("daily_challenges.ensured", day=day.isoformat(), count=len(rows))
    return len(rows)


def generate_daily_challenges(
    session: Session, day: date, per_day: int | None = None
) -> int:
    """Insert the day's challenges if absent (sync Celery path). Returns rows requested."""
    rows = _rows(day, per_day)
    if rows:
        session.execute(_insert_stmt(session, rows))
    logger.info("daily_challenges.generated", day=day.isoformat(), count=len(rows))
    return len(rows)
