from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from referral_engine.models.enums import FraudSeverity
from referral_engine.services.fraud import (
    ADDRESS_REUSED,
    IP_REUSED,
    PHONE_REUSED,
    ReferralCandidate,
    ReferredBooking,
    daily_limit_reason,
    detect_referral_fraud,
    evaluate_referral,
    normalize_address,
    normalize_phone,
    weekly_limit_reason,
)
from referral_engine.services.program_settings import ReferralProgram
from tests.factories import make_booking

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _history(
    count: int,
    code: str = "JOHN1234",
    age: timedelta = timedelta(hours=1),
) -> list[ReferredBooking]:
    return [
        ReferredBooking(
            code=code,
            email=f"friend{i}@example.com",
            phone=f"555{i:07d}",
            address=f"{i} Elm Street",
            ip_address=None,
            created_at=NOW - age,
        )
        for i in range(count)
    ]


def _candidate(**overrides) -> ReferralCandidate:
    values = {
        "code": "JOHN1234",
        "email": "new@example.com",
        "phone": "+1 (999) 000-0000",
        "address": "1 Unique Road",
        "ip_address": None,
    }
    values.update(overrides)
    return ReferralCandidate(**values)


def test_normalizers():
    assert normalize_address("123 Main St.") == normalize_address("123 main st")
    assert normalize_address("  12-B, Oak Ave ") == "12boakave"
    assert normalize_phone("+1 (555) 123-4567") == "15551234567"


def test_clean_candidate_is_valid():
    result = evaluate_referral(_candidate(), _history(3), ReferralProgram(), now=NOW)
    assert result.is_valid
    assert result.reason is None


def test_same_address_different_email_rejected():
    """Formatting differences do not hide a reused address."""
    history = [
        ReferredBooking(
            code="JOHN1234",
            email="someone@example.com",
            phone="5550000001",
            address="123 Main St",
            ip_address=None,
            created_at=NOW - timedelta(days=30),
        )
    ]
    result = evaluate_referral(
        _candidate(address="123 main st."), history, ReferralProgram(), now=NOW
    )
    assert not result.is_valid
    assert result.reason == ADDRESS_REUSED
    assert result.severity == FraudSeverity.HIGH


def test_same_address_same_email_allowed():
    history = [
        ReferredBooking(
            code="JOHN1234",
            email="NEW@example.com",
            phone="5550000001",
            address="1 Unique Road",
            ip_address=None,
            created_at=NOW - timedelta(days=30),
        )
    ]
    result = evaluate_referral(_candidate(), history, ReferralProgram(), now=NOW)
    assert result.is_valid


def test_same_phone_rejected():
    history = [
        ReferredBooking(
            code="MARY5555",
            email="other@example.com",
            phone="19990000000",
            address="9 Far Away Lane",
            ip_address=None,
            created_at=NOW - timedelta(days=3),
        )
    ]
    result = evaluate_referral(_candidate(), history, ReferralProgram(), now=NOW)
    assert not result.is_valid
    assert result.reason == PHONE_REUSED
    assert result.severity == FraudSeverity.HIGH


def test_same_ip_rejected_only_with_known_ip():
    history = [
        ReferredBooking(
            code="MARY5555",
            email="other@example.com",
            phone="5550000009",
            address="9 Far Away Lane",
            ip_address="203.0.113.7",
            created_at=NOW - timedelta(days=3),
        )
    ]
    program = ReferralProgram()

    assert evaluate_referral(_candidate(), history, program, now=NOW).is_valid

    result = evaluate_referral(_candidate(ip_address="203.0.113.7"), history, program, now=NOW)
    assert not result.is_valid
    assert result.reason == IP_REUSED
    assert result.severity == FraudSeverity.MEDIUM


def test_address_check_wins_over_velocity():
    """Checks run in order; the first failure is reported."""
    history = _history(20)
    candidate = _candidate(address=history[0].address)
    result = evaluate_referral(candidate, history, ReferralProgram(), now=NOW)
    assert result.reason == ADDRESS_REUSED


def test_daily_limit_blocks_eleventh_use():
    program = ReferralProgram(max_referrals_per_day=10)

    assert evaluate_referral(_candidate(), _history(9), program, now=NOW).is_valid

    result = evaluate_referral(_candidate(), _history(10), program, now=NOW)
    assert not result.is_valid
    assert result.reason == daily_limit_reason(10)
    assert result.reason == (
        "This referral code has reached its daily limit of 10 uses. Please try again tomorrow."
    )
    assert result.severity == FraudSeverity.MEDIUM


def test_daily_limit_ignores_older_uses_and_other_codes():
    program = ReferralProgram(max_referrals_per_day=2)
    history = _history(5, age=timedelta(days=2)) + _history(5, code="MARY5555")
    assert evaluate_referral(_candidate(), history, program, now=NOW).is_valid


def test_weekly_limit():
    program = ReferralProgram(max_referrals_per_day=10, max_referrals_per_week=5)
    history = _history(5, age=timedelta(days=3))

    result = evaluate_referral(_candidate(), history, program, now=NOW)
    assert not result.is_valid
    assert result.reason == weekly_limit_reason(5)


def test_disabled_fraud_detection_short_circuits():
    program = ReferralProgram(fraud_detection_enabled=False, max_referrals_per_day=0)
    history = _history(50)
    candidate = _candidate(address=history[0].address, phone=history[0].phone)
    assert evaluate_referral(candidate, history, program, now=NOW).is_valid


def test_individual_checks_can_be_switched_off():
    history = _history(1)
    candidate = _candidate(address=history[0].address)
    program = ReferralProgram(block_same_address=False)
    assert evaluate_referral(candidate, history, program, now=NOW).is_valid


def test_naive_history_timestamps_are_utc():
    history = [
        ReferredBooking(
            code="JOHN1234",
            email=f"f{i}@example.com",
            phone=f"555{i:07d}",
            address=f"{i} Elm",
            ip_address=None,
            created_at=(NOW - timedelta(hours=2)).replace(tzinfo=None),
        )
        for i in range(3)
    ]
    program = ReferralProgram(max_referrals_per_day=3)
    assert not evaluate_referral(_candidate(), history, program, now=NOW).is_valid


@pytest.mark.asyncio
async def test_detect_referral_fraud_reads_referred_bookings(db: AsyncSession, program):
    """A prior referred booking at the same address blocks a new email."""
    await make_booking(
        db,
        email="first@example.com",
        address="123 Main St",
        referral_code="JOHN1234",
    )
    # Unreferred bookings are not part of the history.
    await make_booking(db, email="plain@example.com", phone="+1 222 3334444")

    result = await detect_referral_fraud(
        db,
        program,
        code="JOHN1234",
        email="second@example.com",
        phone="+1 000 0000000",
        address="123 main st",
    )
    assert not result.is_valid
    assert result.reason == ADDRESS_REUSED

    result = await detect_referral_fraud(
        db,
        program,
        code="JOHN1234",
        email="third@example.com",
        phone="+1 222 3334444",
        address="77 Other Road",
    )
    assert result.is_valid


@pytest.mark.asyncio
async def test_detect_referral_fraud_excludes_own_booking(db: AsyncSession, program):
    booking = await make_booking(
        db,
        email="first@example.com",
        address="123 Main St",
        referral_code="JOHN1234",
    )
    result = await detect_referral_fraud(
        db,
        program,
        code="JOHN1234",
        email="other@example.com",
        phone=booking.phone,
        address=booking.address,
        exclude_booking_id=booking.id,
    )
    assert result.is_valid


@pytest.mark.asyncio
async def test_daily_velocity_from_database(db: AsyncSession):
    program = ReferralProgram(max_referrals_per_day=10)
    for _ in range(10):
        await make_booking(db, referral_code="JOHN1234")

    result = await detect_referral_fraud(
        db,
        program,
        code="JOHN1234",
        email="eleventh@example.com",
        phone="+1 999 1112222",
        address="11 Eleventh Street",
    )
    assert not result.is_valid
    assert result.reason == daily_limit_reason(10)
