"""Celery task: publish the daily challenge set for today and tomorrow."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog
from celery import shared_task

logger = structlog.get_logger()


@shared_task(name="tasks.generate_daily_challenges", bind=True, max_retries=3, default_retry_delay=300)
def generate_daily_challenges_task(self) -> dict:
    """Insert today's and tomorrow's challenges; existing slots are left alone.

    Scheduled by Celery Beat at 00:05 UTC. Generating tomorrow as well means a
    missed beat run still leaves the next day covered.
    """
    from progression.core.celery_db import get_celery_db_session
    from progression.modules.gamification.challenges import generate_daily_challenges

    today = datetime.now(timezone.utc).date()
    days = [today, today + timedelta(days=1)]
    try:
        with get_celery_db_session() as session:
            counts = {day.isoformat(): generate_daily_challenges(session, day) for day in days}
        logger.info("daily_challenges_task.complete", days=counts)
        return {"status": "ok", "days": counts}
    except Exception as exc:
        logger.error("daily_challenges_task.failed", error=str(exc))
        raise self.retry(exc=exc)
