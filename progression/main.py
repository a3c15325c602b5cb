from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy import text

from progression.core.config import settings
from progression.core.database import async_session_factory
from progression.core.errors import (
    ProgressionError,
    global_exception_handler,
    http_exception_handler,
    progression_exception_handler,
)
from progression.core.sentry import init_sentry

import progression.models  # noqa: F401  register all models at startup

from progression.modules.gamification.challenges import ensure_daily_challenges
from progression.modules.gamification.router import router as gamification_router
from progression.modules.gamification.service import utc_clock

# ── Sentry must be initialised BEFORE the FastAPI app is created ─────────────
init_sentry(settings.SENTRY_DSN, settings.SENTRY_ENVIRONMENT, settings.APP_VERSION)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    logger.info("Starting progression API", env=settings.APP_ENV)

    # Beat normally does this shortly after midnight; cover a cold start mid-day
    async with async_session_factory() as db:
        try:
            await ensure_daily_challenges(db, utc_clock().date())
            await db.commit()
        except Exception as exc:  # noqa: BLE001
            await db.rollback()
            logger.warning("daily_challenge_seed_failed", error=str(exc))

    yield
    logger.info("Shutting down progression API")


_is_prod = settings.APP_ENV == "production"

app = FastAPI(
    title="Progression API",
    description="XP, levels, badges, streaks and daily challenges for learner activity.",
    version="0.1.0",
    docs_url=None if _is_prod else "/docs",
    redoc_url=None if _is_prod else "/redoc",
    openapi_url=None if _is_prod else "/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
)

app.add_exception_handler(ProgressionError, progression_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, global_exception_handler)


# ── X-API-Version response header ────────────────────────────────────────────


@app.middleware("http")
async def add_version_header(request: Request, call_next) -> Response:
    response = await call_next(request)
    response.headers["X-API-Version"] = "v1"
    return response


# ── Health check (root-level, not under /v1) ─────────────────────────────────


@app.get("/health")
async def health_check() -> dict:
    """Probe the primary database."""
    checks: dict[str, dict] = {}
    try:
        async with async_session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy"}
    except Exception as exc:  # noqa: BLE001
        checks["database"] = {"status": "unhealthy", "error": str(exc)}

    overall = (
        "healthy"
        if all(c["status"] == "healthy" for c in checks.values())
        else "degraded"
    )
    return {"status": overall, "service": "progression-api", "checks": checks}


# ── /v1 versioned router ──────────────────────────────────────────────────────

api_v1 = APIRouter(prefix="/v1")
api_v1.include_router(gamification_router)

app.include_router(api_v1)
