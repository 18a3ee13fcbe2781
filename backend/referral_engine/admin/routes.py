import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from referral_engine.database import get_db
from referral_engine.dependencies import get_current_admin, get_referral_program
from referral_engine.models.audit_log import AuditLog
from referral_engine.models.enums import AuditAction, ReferralStatus
from referral_engine.models.user import User
from referral_engine.schemas.admin import (
    AdjustCreditRequest,
    ReferralSettingsResponse,
    ReferralSettingsUpdate,
)
from referral_engine.schemas.referral import CreditBalanceResponse
from referral_engine.services import reporting
from referral_engine.services.errors import InsufficientBalance, InvalidAmount
from referral_engine.services.ledger import adjust_credit
from referral_engine.services.program_settings import (
    ReferralProgram,
    ensure_settings_row,
    update_settings,
)
from referral_engine.utils.rate_limit import ADMIN_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter(prefix="/admin", tags=["admin"])


# --- Dashboard ---


@router.get("/referrals/stats")
@limiter.limit(ADMIN_RATE_LIMIT)
async def referral_stats(
    request: Request,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Referral counts by status, conversion rate and credit totals."""
    return await reporting.referral_stats(db)


@router.get("/referrals/top-referrers")
@limiter.limit(ADMIN_RATE_LIMIT)
async def top_referrers(
    request: Request,
    limit: int = Query(10, ge=1, le=100),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await reporting.top_referrers(db, limit=limit)


@router.get("/referrals")
@limiter.limit(ADMIN_RATE_LIMIT)
async def list_referrals(
    request: Request,
    status_filter: str | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=10000),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """List referrals, newest first, optionally filtered by status ("all" for no filter)."""
    referral_status = None
    if status_filter and status_filter != "all":
        try:
            referral_status = ReferralStatus(status_filter)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid status: {status_filter}. Must be one of: pending, completed, credited",
            )
    return await reporting.list_referrals(db, status=referral_status, limit=limit, offset=offset)


@router.get("/referrals/{referral_id}")
@limiter.limit(ADMIN_RATE_LIMIT)
async def get_referral(
    request: Request,
    referral_id: uuid.UUID,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    detail = await reporting.get_referral_detail(db, referral_id)
    if detail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Referral not found")
    return detail


@router.get("/referral-credits")
@limiter.limit(ADMIN_RATE_LIMIT)
async def list_credit_accounts(
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=10000),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await reporting.list_credit_accounts(db, limit=limit, offset=offset)


@router.get("/customers/{customer_id}/referral-summary")
@limiter.limit(ADMIN_RATE_LIMIT)
async def customer_referral_summary(
    request: Request,
    customer_id: uuid.UUID,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    program: ReferralProgram = Depends(get_referral_program),
):
    customer = await reporting.get_customer(db, customer_id)
    if customer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return await reporting.customer_referral_summary(db, customer, program)


@router.get("/bookings/{booking_id}/referral-info")
@limiter.limit(ADMIN_RATE_LIMIT)
async def booking_referral_info(
    request: Request,
    booking_id: uuid.UUID,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    program: ReferralProgram = Depends(get_referral_program),
):
    """Referral reward and available credit for a booking, used when invoicing it."""
    booking = await reporting.get_booking(db, booking_id)
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return await reporting.booking_referral_info(db, booking, program)


# --- Credit adjustments ---


@router.post("/referral-credits/adjust", response_model=CreditBalanceResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def adjust_referral_credit(
    request: Request,
    body: AdjustCreditRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Manually add (positive amount) or remove (negative amount) credit.

    A removal larger than the available balance is rejected and changes nothing.
    """
    customer = await reporting.get_customer(db, body.customer_id)
    if customer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")

    try:
        account = await adjust_credit(db, body.customer_id, body.amount)
    except InsufficientBalance as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Insufficient credit balance: available {exc.available}",
        )
    except InvalidAmount as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    sign = "+" if body.amount > 0 else "-"
    db.add(AuditLog(
        action=AuditAction.CREDIT_ADJUSTED.value,
        admin_user_id=admin.id,
        target_customer_id=customer.id,
        detail=f"Manually adjusted referral credit: {sign}${abs(body.amount) / 100:.2f}"
        + (f" ({body.reason})" if body.reason else ""),
        metadata_json={"amount": body.amount, "available_balance": account.available_balance},
    ))
    await db.flush()
    logger.info(
        "referral_credit_adjusted",
        customer_id=str(customer.id),
        amount=body.amount,
        admin_id=str(admin.id),
    )
    return CreditBalanceResponse.model_validate(account)


# --- Program settings ---


@router.get("/referral-settings", response_model=ReferralSettingsResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def get_referral_settings(
    request: Request,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Current program settings; creates the default row on first access."""
    row = await ensure_settings_row(db)
    return ReferralSettingsResponse.model_validate(row)


@router.patch("/referral-settings", response_model=ReferralSettingsResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def patch_referral_settings(
    request: Request,
    body: ReferralSettingsUpdate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No settings to update")

    row = await update_settings(db, changes)
    db.add(AuditLog(
        action=AuditAction.SETTINGS_UPDATED.value,
        admin_user_id=admin.id,
        detail="Updated referral program settings",
        metadata_json=changes,
    ))
    await db.flush()
    return ReferralSettingsResponse.model_validate(row)
