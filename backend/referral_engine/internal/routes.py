"""Endpoints for the booking system, the invoicing path and the cron trigger.

All of them require the shared ``X-Internal-Token`` header.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from referral_engine.database import get_db
from referral_engine.dependencies import (
    get_orchestrator,
    get_referral_program,
    require_internal_token,
)
from referral_engine.models.booking import Booking
from referral_engine.models.customer import Customer
from referral_engine.schemas.referral import (
    AttachReferralRequest,
    AttachReferralResponse,
    CreditBalanceResponse,
    TickReportResponse,
    UseCreditRequest,
)
from referral_engine.services.errors import InsufficientBalance, InvalidAmount
from referral_engine.services.ledger import use_credit
from referral_engine.services.orchestrator import ReferralOrchestrator
from referral_engine.services.program_settings import ReferralProgram
from referral_engine.services.referrals import attach_referral

logger = structlog.get_logger()
router = APIRouter(dependencies=[Depends(require_internal_token)])


@router.post(
    "/referrals/attach",
    response_model=AttachReferralResponse,
    status_code=status.HTTP_201_CREATED,
)
async def attach_referral_to_booking(
    body: AttachReferralRequest,
    db: AsyncSession = Depends(get_db),
    program: ReferralProgram = Depends(get_referral_program),
):
    result = await db.execute(select(Booking).where(Booking.id == body.booking_id))
    booking = result.scalar_one_or_none()
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")

    validation, referral = await attach_referral(
        db, program, booking, body.code, ip_address=body.ip_address
    )
    if referral is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "reason": validation.reason,
                "severity": validation.severity.value if validation.severity else None,
            },
        )
    return AttachReferralResponse.from_referral(referral)


@router.post("/referrals/process-credits", response_model=TickReportResponse)
async def trigger_process_credits(
    orchestrator: ReferralOrchestrator = Depends(get_orchestrator),
):
    """One credit tick, for deployments where the in-process scheduler is off."""
    report = await orchestrator.process_referral_credits()
    return TickReportResponse(**report.as_dict())


@router.post("/referrals/generate-codes", response_model=TickReportResponse)
async def trigger_generate_codes(
    orchestrator: ReferralOrchestrator = Depends(get_orchestrator),
):
    report = await orchestrator.generate_missing_referral_codes()
    return TickReportResponse(**report.as_dict())


@router.post("/referral-credits/use", response_model=CreditBalanceResponse)
async def use_referral_credit(
    body: UseCreditRequest,
    db: AsyncSession = Depends(get_db),
):
    """Spend credit against an invoice."""
    customer = await db.get(Customer, body.customer_id)
    if customer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")

    try:
        account = await use_credit(db, body.customer_id, body.amount)
    except (InsufficientBalance, InvalidAmount) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return CreditBalanceResponse.model_validate(account)
