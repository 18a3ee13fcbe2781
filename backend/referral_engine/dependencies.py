import uuid

import jwt
import structlog
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from referral_engine.auth.service import decode_access_token
from referral_engine.config import settings
from referral_engine.database import get_db
from referral_engine.models.enums import UserRole
from referral_engine.models.user import User
from referral_engine.services.internal_auth import is_valid_internal_token
from referral_engine.services.orchestrator import ReferralOrchestrator
from referral_engine.services.program_settings import ReferralProgram, load_referral_program

logger = structlog.get_logger()
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate the JWT, return the authenticated user."""
    try:
        payload = decode_access_token(credentials.credentials)
        user_id = uuid.UUID(payload["sub"])
    except (jwt.PyJWTError, KeyError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account has been deactivated",
        )
    return user


async def get_current_admin(
    user: User = Depends(get_current_user),
) -> User:
    """Get current user and verify they are an admin."""
    if user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


async def require_internal_token(
    x_internal_token: str | None = Header(default=None),
) -> None:
    """Guard for calls from the booking system and the cron trigger."""
    if not is_valid_internal_token(
        expected_token=settings.INTERNAL_API_TOKEN, received_token=x_internal_token
    ):
        logger.warning("internal_token_rejected", token_present=x_internal_token is not None)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal token",
        )


async def get_referral_program(db: AsyncSession = Depends(get_db)) -> ReferralProgram:
    return await load_referral_program(db)


def get_orchestrator() -> ReferralOrchestrator:
    from referral_engine.services.scheduler import get_orchestrator as _process_orchestrator

    return _process_orchestrator()
