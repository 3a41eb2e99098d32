"""
FastAPI dependencies for authenticating API callers

Usage:
    @router.get("/me")
    async def my_jobs(
        courier: Courier = Depends(get_current_courier),
        db: AsyncSession = Depends(get_db),
    ):
        ...

    @router.get("/admin/rules", dependencies=[Depends(require_roles(UserRole.ADMIN))])
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import TokenPayload, verify_token
from app.core.logging import get_logger, set_actor_id
from app.db.database import get_db
from app.db.models.courier import Courier
from app.db.models.user import User, UserRole

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> TokenPayload:
    """Verified token claims; 401 when missing, invalid or expired"""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token_data = verify_token(credentials.credentials)
    if not token_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    set_actor_id(token_data.user_id)
    return token_data


async def get_current_user(
    token_data: TokenPayload = Depends(get_current_user_token),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Caller's account; 403 when it no longer exists or was deactivated"""
    result = await db.execute(select(User).where(User.id == token_data.user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        logger.warning(
            "Access denied - user inactive",
            extra_data={
                "user_id": token_data.user_id,
                "user_found": user is not None,
            },
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is not active",
        )
    if user.role != token_data.role:
        logger.warning(
            "Access denied - role in token does not match account",
            extra_data={
                "user_id": user.id,
                "token_role": token_data.role.value,
                "account_role": user.role.value,
            },
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token role does not match account",
        )
    return user


def require_roles(*roles: UserRole):
    """Dependency factory admitting only callers with one of ``roles``"""
    allowed = frozenset(roles)

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            logger.warning(
                "Access denied - role not allowed",
                extra_data={
                    "user_id": user.id,
                    "role": user.role.value,
                    "allowed": sorted(r.value for r in allowed),
                },
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return dependency


async def get_current_courier(
    user: User = Depends(require_roles(UserRole.COURIER)),
    db: AsyncSession = Depends(get_db),
) -> Courier:
    """Courier profile of the caller; 403 when the account has none"""
    result = await db.execute(select(Courier).where(Courier.user_id == user.id))
    courier = result.scalar_one_or_none()
    if not courier:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No courier profile for this account",
        )
    return courier


async def get_current_admin(user: User = Depends(require_roles(UserRole.ADMIN))) -> User:
    return user
