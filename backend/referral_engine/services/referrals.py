"""Referral intake: validate a code for a booking and attach the Referral.

Rejections (program off, unknown code, fraud) come back as a
``ReferralValidation`` with ``accepted=False`` and a customer-facing reason,
never as exceptions.
"""

import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from referral_engine.metrics import FRAUD_REJECTIONS, REFERRALS_ATTACHED
from referral_engine.models.booking import Booking
from referral_engine.models.customer import Customer
from referral_engine.models.enums import FraudSeverity, ReferralStatus
from referral_engine.models.referral import Referral
from referral_engine.services.fraud import detect_referral_fraud, normalize_code
from referral_engine.services.program_settings import ReferralProgram
from referral_engine.services.tiers import calculate_tier
from referral_engine.utils.log_mask import mask_email, mask_phone

logger = structlog.get_logger()

PROGRAM_DISABLED = "Referral program is currently disabled"
INVALID_CODE = "Invalid referral code"
SELF_REFERRAL = "You cannot use your own referral code"


@dataclass(frozen=True)
class ReferralValidation:
    accepted: bool
    reason: str | None = None
    severity: FraudSeverity | None = None
    referrer: Customer | None = None
    tier: int | None = None
    amount: int | None = None


async def find_referrer(db: AsyncSession, code: str) -> Customer | None:
    normalized = normalize_code(code)
    if not normalized:
        return None
    result = await db.execute(select(Customer).where(Customer.referral_code == normalized))
    return result.scalar_one_or_none()


async def validate_referral(
    db: AsyncSession,
    program: ReferralProgram,
    code: str,
    email: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    ip_address: str | None = None,
    exclude_booking_id: uuid.UUID | None = None,
) -> ReferralValidation:
    """Check a code against the program and, when contact data is complete, fraud rules.

    On acceptance the result carries the referrer and the tier/amount the
    referrer would earn if the referral were credited now.
    """
    if not program.enabled:
        return ReferralValidation(accepted=False, reason=PROGRAM_DISABLED)

    referrer = await find_referrer(db, code)
    if referrer is None:
        return ReferralValidation(accepted=False, reason=INVALID_CODE)

    if email and referrer.email.strip().lower() == email.strip().lower():
        return ReferralValidation(accepted=False, reason=SELF_REFERRAL, referrer=referrer)

    if email and phone and address:
        check = await detect_referral_fraud(
            db,
            program,
            code=normalize_code(code),
            email=email,
            phone=phone,
            address=address,
            ip_address=ip_address,
            exclude_booking_id=exclude_booking_id,
        )
        if not check.is_valid:
            FRAUD_REJECTIONS.labels(severity=check.severity.value).inc()
            logger.warning(
                "referral_fraud_rejected",
                code=normalize_code(code),
                email=mask_email(email),
                phone=mask_phone(phone),
                severity=check.severity.value,
                reason=check.reason,
            )
            return ReferralValidation(
                accepted=False, reason=check.reason, severity=check.severity, referrer=referrer
            )

    reward = await calculate_tier(db, referrer.id, program)
    return ReferralValidation(
        accepted=True, referrer=referrer, tier=reward.tier, amount=reward.amount
    )


async def get_referral_for_booking(db: AsyncSession, booking_id: uuid.UUID) -> Referral | None:
    result = await db.execute(select(Referral).where(Referral.referred_booking_id == booking_id))
    return result.scalar_one_or_none()


async def attach_referral(
    db: AsyncSession,
    program: ReferralProgram,
    booking: Booking,
    code: str,
    ip_address: str | None = None,
) -> tuple[ReferralValidation, Referral | None]:
    """Validate ``code`` for ``booking`` and create its pending Referral.

    Idempotent per booking: if a Referral already exists it is returned as
    accepted without running the checks again.
    """
    existing = await get_referral_for_booking(db, booking.id)
    if existing is not None:
        logger.info(
            "referral_already_attached",
            booking_id=str(booking.id),
            referral_id=str(existing.id),
        )
        return (
            ReferralValidation(accepted=True, tier=existing.tier, amount=existing.credit_amount),
            existing,
        )

    validation = await validate_referral(
        db,
        program,
        code=code,
        email=booking.email,
        phone=booking.phone,
        address=booking.address,
        ip_address=ip_address or booking.ip_address,
        exclude_booking_id=booking.id,
    )
    if not validation.accepted:
        logger.warning(
            "referral_attach_rejected",
            booking_id=str(booking.id),
            code=normalize_code(code),
            reason=validation.reason,
        )
        return validation, None

    booking.referral_code = normalize_code(code)
    if ip_address:
        booking.ip_address = ip_address

    referral = Referral(
        referrer_id=validation.referrer.id,
        referred_booking_id=booking.id,
        referred_customer_id=booking.customer_id,
        code=normalize_code(code),
        status=ReferralStatus.PENDING,
        tier=validation.tier,
        credit_amount=validation.amount,
    )
    db.add(referral)
    try:
        await db.flush()
    except IntegrityError:
        # Lost a race with a concurrent attach for the same booking.
        await db.rollback()
        existing = await get_referral_for_booking(db, booking.id)
        if existing is None:
            raise
        return (
            ReferralValidation(accepted=True, tier=existing.tier, amount=existing.credit_amount),
            existing,
        )

    await db.refresh(referral)
    REFERRALS_ATTACHED.inc()
    logger.info(
        "referral_attached",
        booking_id=str(booking.id),
        referral_id=str(referral.id),
        referrer_id=str(validation.referrer.id),
        tier=validation.tier,
    )
    return validation, referral
