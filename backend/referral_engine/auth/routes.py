import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from referral_engine.auth.service import (
    create_access_token,
    hash_password,
    verify_password_async,
)
from referral_engine.config import settings
from referral_engine.database import get_db
from referral_engine.models.user import User
from referral_engine.schemas.auth import LoginRequest, TokenResponse
from referral_engine.utils.log_mask import mask_email
from referral_engine.utils.rate_limit import AUTH_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter()

# Compared against when the email is unknown so both paths cost one bcrypt check.
_DUMMY_HASH = hash_password("timing-equalizer-not-a-real-password")


@router.post("/login", response_model=TokenResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate a back-office user and return an access token."""
    response.headers["Cache-Control"] = "no-store"

    result = await db.execute(select(User).where(User.email == body.email.lower()))
    user = result.scalar_one_or_none()

    if user is None:
        await verify_password_async(body.password, _DUMMY_HASH)
        logger.warning("login_failed", email=mask_email(body.email), reason="unknown_email")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not await verify_password_async(body.password, user.password_hash):
        logger.warning("login_failed", email=mask_email(body.email), reason="bad_password")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account has been deactivated",
        )

    logger.info("user_login", user_id=str(user.id))
    return TokenResponse(
        access_token=create_access_token(str(user.id)),
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
