"""Sentry setup shared by the progression API process and the challenge worker."""

import structlog
import sentry_sdk
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

logger = structlog.get_logger()

# bearer tokens carry the user id in `sub`; never ship them
_REDACTED_HEADERS = {"authorization", "cookie", "x-api-key"}


def _redact_credentials(event: dict, hint: dict) -> dict:
    headers = event.get("request", {}).get("headers", {})
    for name in list(headers):
        if name.lower() in _REDACTED_HEADERS:
            headers[name] = "[REDACTED]"
    return event


def init_sentry(
    dsn: str | None,
    environment: str = "development",
    release: str | None = None,
) -> None:
    """Report award, streak and challenge-task failures to Sentry.

    Called by ``progression.main`` and ``progression.worker``. Without a DSN
    it logs once and leaves the SDK uninitialised.
    """
    if not dsn:
        logger.warning("sentry_disabled", reason="SENTRY_DSN not set")
        return

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=release,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            CeleryIntegration(monitor_beat_tasks=True),
        ],
        send_default_pii=False,
        before_send=_redact_credentials,
    )
    sentry_sdk.set_tag("service", "progression-api")
    logger.info("sentry_initialized", environment=environment)
