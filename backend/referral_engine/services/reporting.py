"""Read-only aggregates for the admin referral dashboard."""

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from referral_engine.models.booking import Booking
from referral_engine.models.customer import Customer
from referral_engine.models.enums import BookingStatus, ReferralStatus
from referral_engine.models.referral import Referral
from referral_engine.models.referral_credit import ReferralCredit
from referral_engine.services.ledger import get_account
from referral_engine.services.program_settings import ReferralProgram
from referral_engine.services.referrals import find_referrer
from referral_engine.services.tiers import calculate_tier, tier_for_count


async def referral_stats(db: AsyncSession) -> dict:
    status_result = await db.execute(
        select(Referral.status, func.count(Referral.id)).group_by(Referral.status)
    )
    by_status = {ReferralStatus(row[0]).value: row[1] for row in status_result}
    pending = by_status.get(ReferralStatus.PENDING.value, 0)
    completed = by_status.get(ReferralStatus.COMPLETED.value, 0)
    credited = by_status.get(ReferralStatus.CREDITED.value, 0)
    total = pending + completed + credited

    # Completed and credited both mean the referred booking went through.
    conversion_rate = (completed + credited) / total * 100 if total else 0.0

    credit_result = await db.execute(
        select(
            func.coalesce(func.sum(ReferralCredit.total_earned), 0),
            func.coalesce(func.sum(ReferralCredit.total_used), 0),
            func.coalesce(func.sum(ReferralCredit.available_balance), 0),
        )
    )
    awarded, used, available = credit_result.one()

    return {
        "total_referrals": total,
        "pending_referrals": pending,
        "completed_referrals": completed,
        "credited_referrals": credited,
        "conversion_rate": round(conversion_rate, 2),
        "credits_awarded": int(awarded),
        "credits_used": int(used),
        "credits_available": int(available),
    }


async def top_referrers(db: AsyncSession, limit: int = 10) -> list[dict]:
    """Customers ranked by credited referrals, descending. Customers with none are left out."""
    credited_count = func.count(Referral.id).label("successful_referrals")
    # Earned through referrals only; admin adjustments are not counted.
    credited_total = func.coalesce(func.sum(Referral.credit_amount), 0)
    result = await db.execute(
        select(
            Customer.id,
            Customer.name,
            Customer.email,
            Customer.referral_code,
            credited_count,
            credited_total,
        )
        .join(Referral, Referral.referrer_id == Customer.id)
        .where(Referral.status == ReferralStatus.CREDITED)
        .group_by(
            Customer.id,
            Customer.name,
            Customer.email,
            Customer.referral_code,
        )
        .order_by(credited_count.desc(), Customer.name)
        .limit(limit)
    )
    return [
        {
            "customer_id": str(row[0]),
            "customer_name": row[1],
            "customer_email": row[2],
            "referral_code": row[3],
            "successful_referrals": row[4],
            "total_credits_earned": int(row[5]),
        }
        for row in result.all()
    ]


async def customer_referral_summary(
    db: AsyncSession, customer: Customer, program: ReferralProgram
) -> dict:
    result = await db.execute(
        select(Referral)
        .where(Referral.referrer_id == customer.id)
        .order_by(Referral.created_at.desc())
    )
    referrals = result.scalars().all()
    credited = sum(1 for r in referrals if r.status == ReferralStatus.CREDITED)
    in_progress = len(referrals) - credited

    account_result = await db.execute(
        select(ReferralCredit).where(ReferralCredit.customer_id == customer.id)
    )
    account = account_result.scalar_one_or_none()
    next_reward = tier_for_count(credited, program)

    return {
        "customer_id": str(customer.id),
        "referral_code": customer.referral_code,
        "friends_referred": credited,
        "pending_referrals": in_progress,
        "credits_earned": account.total_earned if account else 0,
        "credits_used": account.total_used if account else 0,
        "available_balance": account.available_balance if account else 0,
        "current_tier": next_reward.tier,
        "next_reward_amount": next_reward.amount,
        "referrals": [_referral_row(r) for r in referrals],
    }


def _referral_row(referral: Referral) -> dict:
    return {
        "id": str(referral.id),
        "referrer_id": str(referral.referrer_id),
        "booking_id": str(referral.referred_booking_id),
        "referred_customer_id": str(referral.referred_customer_id) if referral.referred_customer_id else None,
        "code": referral.code,
        "status": ReferralStatus(referral.status).value,
        "tier": referral.tier,
        "credit_amount": referral.credit_amount,
        "created_at": referral.created_at.isoformat() if referral.created_at else None,
        "completed_at": referral.completed_at.isoformat() if referral.completed_at else None,
        "credited_at": referral.credited_at.isoformat() if referral.credited_at else None,
    }


async def list_referrals(
    db: AsyncSession,
    status: ReferralStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    referrer = aliased(Customer)
    referred = aliased(Customer)

    count_stmt = select(func.count(Referral.id))
    stmt = (
        select(Referral, referrer.name, referred.name, referred.email)
        .join(referrer, referrer.id == Referral.referrer_id)
        .outerjoin(referred, referred.id == Referral.referred_customer_id)
    )
    if status is not None:
        stmt = stmt.where(Referral.status == status)
        count_stmt = count_stmt.where(Referral.status == status)

    total = (await db.execute(count_stmt)).scalar() or 0
    result = await db.execute(
        stmt.order_by(Referral.created_at.desc(), Referral.id).offset(offset).limit(limit)
    )

    items = []
    for referral, referrer_name, referred_name, referred_email in result.all():
        row = _referral_row(referral)
        row["referrer_name"] = referrer_name
        row["referred_customer_name"] = referred_name
        row["referred_customer_email"] = referred_email
        items.append(row)
    return {"total": total, "referrals": items}


async def list_credit_accounts(db: AsyncSession, limit: int = 50, offset: int = 0) -> dict:
    """Every customer in the program (has a code), with a zero balance if no account yet."""
    in_program = Customer.referral_code.is_not(None)
    total = (await db.execute(select(func.count(Customer.id)).where(in_program))).scalar() or 0

    result = await db.execute(
        select(
            Customer.id,
            Customer.name,
            Customer.email,
            Customer.referral_code,
            func.coalesce(ReferralCredit.total_earned, 0),
            func.coalesce(ReferralCredit.total_used, 0),
            func.coalesce(ReferralCredit.available_balance, 0),
        )
        .outerjoin(ReferralCredit, ReferralCredit.customer_id == Customer.id)
        .where(in_program)
        .order_by(Customer.name, Customer.id)
        .offset(offset)
        .limit(limit)
    )
    return {
        "total": total,
        "accounts": [
            {
                "customer_id": str(row[0]),
                "customer_name": row[1],
                "customer_email": row[2],
                "referral_code": row[3],
                "total_earned": int(row[4]),
                "total_used": int(row[5]),
                "balance": int(row[6]),
            }
            for row in result.all()
        ],
    }


async def get_customer(db: AsyncSession, customer_id: uuid.UUID) -> Customer | None:
    return await db.get(Customer, customer_id)


async def get_referral_detail(db: AsyncSession, referral_id: uuid.UUID) -> dict | None:
    referrer = aliased(Customer)
    referred = aliased(Customer)
    result = await db.execute(
        select(Referral, referrer.name, referred.name, Booking.name, Booking.status)
        .join(referrer, referrer.id == Referral.referrer_id)
        .join(Booking, Booking.id == Referral.referred_booking_id)
        .outerjoin(referred, referred.id == Referral.referred_customer_id)
        .where(Referral.id == referral_id)
    )
    row = result.one_or_none()
    if row is None:
        return None
    referral, referrer_name, referred_name, booking_name, booking_status = row
    detail = _referral_row(referral)
    detail["referrer_name"] = referrer_name
    detail["referred_customer_name"] = referred_name
    detail["booking_name"] = booking_name
    detail["booking_status"] = BookingStatus(booking_status).value
    return detail


async def booking_referral_info(db: AsyncSession, booking: Booking, program: ReferralProgram) -> dict:
    """Referral reward and spendable credit for a booking, shown when invoicing it.

    ``referral_info`` previews what the referrer would earn if the referral
    were credited now; ``credit_info`` is only set when the booking's customer
    has a positive balance.
    """
    referral_info = None
    if booking.referral_code:
        referrer = await find_referrer(db, booking.referral_code)
        if referrer is not None:
            reward = await calculate_tier(db, referrer.id, program)
            referral_info = {
                "code": booking.referral_code,
                "referrer_name": referrer.name,
                "tier": reward.tier,
                "discount_amount": reward.amount,
            }

    credit_info = None
    if booking.customer_id:
        account = await get_account(db, booking.customer_id)
        if account is not None and account.available_balance > 0:
            credit_info = {
                "available": account.available_balance,
                "total_earned": account.total_earned,
                "total_used": account.total_used,
            }

    return {
        "booking_id": str(booking.id),
        "has_referral_code": referral_info is not None,
        "referral_info": referral_info,
        "has_credits": credit_info is not None,
        "credit_info": credit_info,
    }


async def get_booking(db: AsyncSession, booking_id: uuid.UUID) -> Booking | None:
    return await db.get(Booking, booking_id)
