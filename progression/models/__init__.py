"""SQLAlchemy models package: import all models so Base.metadata is populated."""

from progression.models.base import BaseModel, ModelMixin, TimestampedModel
from progression.models.enums import BadgeCategory, ScoreKind, XPAction
from progression.models.gamification import (
    DailyChallenge,
    UserBadge,
    UserChallengeProgress,
    UserProgress,
    XPTransaction,
)

__all__ = [
    "BadgeCategory",
    "BaseModel",
    "DailyChallenge",
    "ModelMixin",
    "ScoreKind",
    "TimestampedModel",
    "UserBadge",
    "UserChallengeProgress",
    "UserProgress",
    "XPAction",
    "XPTransaction",
]
