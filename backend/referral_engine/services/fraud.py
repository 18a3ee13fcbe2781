"""Referral fraud screening.

``evaluate_referral`` is a pure function over the candidate, the booking
history and the program settings; ``detect_referral_fraud`` loads the history
(every booking that carries any referral code) and calls it. Checks run in a
fixed order and the first failure wins:

1. same address, different email (high)
2. same phone, different email (high)
3. same IP, different email (medium, only when an IP is known)
4. daily velocity of the code (medium)
5. weekly velocity of the code (medium)

Nothing here writes to the database.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from referral_engine.models.booking import Booking
from referral_engine.models.enums import FraudSeverity
from referral_engine.services.program_settings import ReferralProgram

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_NON_DIGIT = re.compile(r"\D")

ADDRESS_REUSED = "This address has already been referred. Each address can only be referred once."
PHONE_REUSED = "This phone number has already been referred. Each phone number can only be referred once."
IP_REUSED = (
    "Multiple referrals detected from the same location. "
    "Please contact support if you believe this is an error."
)


def daily_limit_reason(limit: int) -> str:
    return f"This referral code has reached its daily limit of {limit} uses. Please try again tomorrow."


def weekly_limit_reason(limit: int) -> str:
    return f"This referral code has reached its weekly limit of {limit} uses. Please try again next week."


def normalize_address(address: str | None) -> str:
    return _NON_ALNUM.sub("", (address or "").lower())


def normalize_phone(phone: str | None) -> str:
    return _NON_DIGIT.sub("", phone or "")


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


@dataclass(frozen=True)
class ReferralCandidate:
    code: str
    email: str
    phone: str
    address: str
    ip_address: str | None = None


@dataclass(frozen=True)
class ReferredBooking:
    """The slice of a referred booking the checks look at."""

    code: str
    email: str
    phone: str
    address: str
    ip_address: str | None
    created_at: datetime


@dataclass(frozen=True)
class FraudCheckResult:
    is_valid: bool
    reason: str | None = None
    severity: FraudSeverity | None = None


VALID = FraudCheckResult(is_valid=True)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def evaluate_referral(
    candidate: ReferralCandidate,
    history: list[ReferredBooking],
    program: ReferralProgram,
    now: datetime | None = None,
) -> FraudCheckResult:
    if not program.fraud_detection_enabled:
        return VALID

    now = _aware(now or datetime.now(timezone.utc))
    email = normalize_email(candidate.email)
    address = normalize_address(candidate.address)
    phone = normalize_phone(candidate.phone)
    code = normalize_code(candidate.code)

    others = [b for b in history if normalize_email(b.email) != email]

    if program.block_same_address and address:
        if any(normalize_address(b.address) == address for b in others):
            return FraudCheckResult(False, ADDRESS_REUSED, FraudSeverity.HIGH)

    if program.block_same_phone_number and phone:
        if any(normalize_phone(b.phone) == phone for b in others):
            return FraudCheckResult(False, PHONE_REUSED, FraudSeverity.HIGH)

    if program.block_same_ip_address and candidate.ip_address:
        if any(b.ip_address == candidate.ip_address for b in others):
            return FraudCheckResult(False, IP_REUSED, FraudSeverity.MEDIUM)

    code_uses = [_aware(b.created_at) for b in history if normalize_code(b.code) == code]

    day_ago = now - timedelta(days=1)
    if sum(1 for created in code_uses if created >= day_ago) >= program.max_referrals_per_day:
        return FraudCheckResult(
            False, daily_limit_reason(program.max_referrals_per_day), FraudSeverity.MEDIUM
        )

    week_ago = now - timedelta(days=7)
    if sum(1 for created in code_uses if created >= week_ago) >= program.max_referrals_per_week:
        return FraudCheckResult(
            False, weekly_limit_reason(program.max_referrals_per_week), FraudSeverity.MEDIUM
        )

    return VALID


async def load_referred_bookings(
    db: AsyncSession, exclude_booking_id: uuid.UUID | None = None
) -> list[ReferredBooking]:
    query = select(
        Booking.referral_code,
        Booking.email,
        Booking.phone,
        Booking.address,
        Booking.ip_address,
        Booking.created_at,
    ).where(Booking.referral_code.is_not(None))
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)

    result = await db.execute(query)
    return [
        ReferredBooking(
            code=row.referral_code,
            email=row.email,
            phone=row.phone,
            address=row.address,
            ip_address=row.ip_address,
            created_at=row.created_at,
        )
        for row in result.all()
    ]


async def detect_referral_fraud(
    db: AsyncSession,
    program: ReferralProgram,
    code: str,
    email: str,
    phone: str,
    address: str,
    ip_address: str | None = None,
    exclude_booking_id: uuid.UUID | None = None,
) -> FraudCheckResult:
    if not program.fraud_detection_enabled:
        return VALID

    history = await load_referred_bookings(db, exclude_booking_id=exclude_booking_id)
    candidate = ReferralCandidate(
        code=code, email=email, phone=phone, address=address, ip_address=ip_address
    )
    return evaluate_referral(candidate, history, program)
