"""
JWT verification.

Access tokens are issued by the marketplace auth service and verified here with
the shared secret. ``create_access_token`` exists for internal callers (the
order service, tests); no endpoint of this service hands tokens out.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as pyjwt
from pydantic import BaseModel, ValidationError

from app.core.config import settings
from app.core.logging import get_logger
from app.db.models.user import UserRole

logger = get_logger(__name__)


class TokenPayload(BaseModel):
    """Claims carried by an access token"""
    user_id: int
    role: UserRole
    exp: int  # Unix timestamp


def create_access_token(
    user_id: int,
    role: UserRole | str,
    expires_minutes: int | None = None,
) -> str:
    """Sign an access token for ``user_id`` acting as ``role``"""
    if not settings.JWT_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY is not set - cannot sign tokens")
    minutes = expires_minutes if expires_minutes is not None else settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    payload = {
        "user_id": user_id,
        "role": UserRole(role).value,
        "exp": int(expire.timestamp()),
    }
    return pyjwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Optional[TokenPayload]:
    """Decode and validate a token, None if invalid or expired"""
    if not settings.JWT_SECRET_KEY:
        logger.error("JWT_SECRET_KEY is empty - tokens cannot be verified")
        return None
    try:
        payload = pyjwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return TokenPayload(**payload)
    except pyjwt.InvalidTokenError:
        logger.warning("JWT token invalid or expired")
        return None
    except (ValidationError, TypeError) as e:
        logger.warning("JWT payload malformed", extra_data={"error": str(e)})
        return None
