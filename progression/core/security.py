"""HS256 bearer tokens. The web app mints them; this service only verifies.

``create_access_token`` exists for service-to-service calls and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import jwt

from progression.core.config import settings


def create_access_token(subject: str, expires_delta: timedelta | None = None, **claims: Any) -> str:
    to_encode: dict[str, Any] = {"sub": subject, **claims}
    to_encode["exp"] = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=24))
    if settings.JWT_AUDIENCE:
        to_encode["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify signature and expiry. Raises ``jose.JWTError`` on any failure."""
    options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
    return jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        options=options,
    )
