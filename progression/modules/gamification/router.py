"""Gamification API router."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from progression.auth.dependencies import get_current_user
from progression.core.config import settings
from progression.core.database import get_db, get_readonly_db
from progression.modules.gamification.schemas import (
    ActivityResult,
    AwardRequest,
    BadgesResponse,
    ChallengeWithProgress,
    DashboardSnapshot,
    LeaderboardResponse,
    LevelOut,
)
from progression.modules.gamification.service import AwardOptions, ProgressionService
from progression.schemas.auth import CurrentUser

logger = structlog.get_logger()

router = APIRouter(prefix="/gamification", tags=["Gamification"])


def get_progression_service(db: AsyncSession = Depends(get_db)) -> ProgressionService:
    return ProgressionService(db)


def get_readonly_progression_service(
    db: AsyncSession = Depends(get_readonly_db),
) -> ProgressionService:
    return ProgressionService(db)


@router.get("", response_model=DashboardSnapshot, summary="Progression dashboard")
async def dashboard(
    current_user: CurrentUser = Depends(get_current_user),
    svc: ProgressionService = Depends(get_readonly_progression_service),
) -> DashboardSnapshot:
    return await svc.get_dashboard(current_user.user_id)


@router.post(
    "/award",
    response_model=ActivityResult,
    status_code=status.HTTP_200_OK,
    summary="Award XP for a completed action",
)
async def award(
    body: AwardRequest,
    current_user: CurrentUser = Depends(get_current_user),
    svc: ProgressionService = Depends(get_progression_service),
) -> ActivityResult:
    """Award XP for ``body.action`` and run streak, badge, challenge and high-score follow-ups.

    Errors surface as the shared error envelope; feature routes that want a
    degraded ``null`` instead call ``ProgressionService.try_record_activity``.
    """
    result = await svc.record_activity(
        current_user.user_id,
        body.action,
        AwardOptions(
            custom_xp=body.custom_xp,
            description=body.description,
            reference_type=body.reference_type,
            reference_id=body.reference_id,
            metadata=body.metadata,
        ),
        score=body.score,
        improvement=body.improvement,
        requirements_percentage=body.requirements_percentage,
    )
    logger.info(
        "gamification.award_request",
        user_id=str(current_user.user_id),
        action=body.action,
        xp_awarded=result.xp_awarded,
        leveled_up=result.leveled_up,
    )
    return result


@router.get("/badges", response_model=BadgesResponse)
async def badges(
    current_user: CurrentUser = Depends(get_current_user),
    svc: ProgressionService = Depends(get_readonly_progression_service),
) -> BadgesResponse:
    return await svc.get_badges_with_status(current_user.user_id)


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    limit: int = Query(default=settings.LEADERBOARD_DEFAULT_LIMIT, ge=1, le=settings.LEADERBOARD_MAX_LIMIT),
    current_user: CurrentUser = Depends(get_current_user),
    svc: ProgressionService = Depends(get_readonly_progression_service),
) -> LeaderboardResponse:
    return await svc.get_leaderboard(current_user.user_id, limit)


@router.get("/levels", response_model=list[LevelOut])
async def level_table(
    current_user: CurrentUser = Depends(get_current_user),
) -> list[LevelOut]:
    return ProgressionService.get_levels()


@router.get("/challenges", response_model=list[ChallengeWithProgress])
async def daily_challenges(
    current_user: CurrentUser = Depends(get_current_user),
    svc: ProgressionService = Depends(get_readonly_progression_service),
) -> list[ChallengeWithProgress]:
    return await svc.get_daily_challenges(current_user.user_id)
