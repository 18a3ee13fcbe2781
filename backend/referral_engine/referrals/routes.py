import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from referral_engine.database import get_db
from referral_engine.dependencies import get_referral_program
from referral_engine.schemas.referral import (
    ReferralProgramResponse,
    ValidateReferralRequest,
    ValidateReferralResponse,
)
from referral_engine.services.program_settings import ReferralProgram
from referral_engine.services.referrals import INVALID_CODE, validate_referral
from referral_engine.utils.rate_limit import CODE_CHECK_RATE_LIMIT, get_real_ip, limiter

logger = structlog.get_logger()
router = APIRouter()


@router.get("/program", response_model=ReferralProgramResponse)
@limiter.limit("60/minute")
async def referral_program(
    request: Request,
    response: Response,
    program: ReferralProgram = Depends(get_referral_program),
):
    """Public program summary for the booking form."""
    response.headers["Cache-Control"] = "no-store"
    return ReferralProgramResponse(
        enabled=program.enabled,
        tier1_amount=program.tier1_amount,
        tier2_amount=program.tier2_amount,
        tier3_amount=program.tier3_amount,
    )


@router.post("/validate", response_model=ValidateReferralResponse)
@limiter.limit(CODE_CHECK_RATE_LIMIT)
async def validate_referral_code(
    request: Request,
    body: ValidateReferralRequest,
    db: AsyncSession = Depends(get_db),
    program: ReferralProgram = Depends(get_referral_program),
):
    """Check a code before the booking is submitted.

    The full fraud check only runs when email, phone and address are all
    given; with just a code the answer is whether the code exists.
    """
    result = await validate_referral(
        db,
        program,
        code=body.code,
        email=body.email,
        phone=body.phone,
        address=body.address,
        ip_address=get_real_ip(request),
    )
    if not result.accepted:
        if result.reason == INVALID_CODE:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=INVALID_CODE)
        return ValidateReferralResponse(valid=False, reason=result.reason)

    return ValidateReferralResponse(
        valid=True,
        referrer_name=result.referrer.name,
        tier=result.tier,
        discount_amount=result.amount,
    )
