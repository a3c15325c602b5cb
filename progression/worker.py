"""
Celery worker for the progression service.

Start worker:    celery -A progression.worker worker --loglevel=info
Start beat:      celery -A progression.worker beat --loglevel=info
Start both:      celery -A progression.worker worker --beat --loglevel=info
"""
from celery import Celery
from celery.schedules import crontab

from progression.core.config import settings
from progression.core.sentry import init_sentry

celery_app = Celery(
    "progression_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.REDIS_URL,
    include=[
        "progression.tasks.daily_challenges",
    ],
)

init_sentry(settings.SENTRY_DSN, settings.SENTRY_ENVIRONMENT, settings.APP_VERSION)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24h
)

celery_app.conf.beat_schedule = {
    # ── Daily challenge rotation ────────────────────────────────────────────
    "generate-daily-challenges": {
        "task": "tasks.generate_daily_challenges",
        "schedule": crontab(hour=0, minute=5),  # 00:05 UTC
    },
}
