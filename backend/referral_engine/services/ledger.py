"""Referral credit ledger.

Each customer has at most one ``ReferralCredit`` account. Balances only move
through ``add_credit`` and ``use_credit``, and each of those is one UPDATE that
reads and writes the stored columns in place, so two paths touching the same
account cannot lose an update. ``use_credit`` guards the UPDATE with the
balance check, so the balance cannot go negative even under concurrency.
"""

import uuid

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from referral_engine.models.referral_credit import ReferralCredit
from referral_engine.services.errors import InsufficientBalance, InvalidAmount

logger = structlog.get_logger()


def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(amount)


async def get_account(db: AsyncSession, customer_id: uuid.UUID) -> ReferralCredit | None:
    result = await db.execute(
        select(ReferralCredit)
        .where(ReferralCredit.customer_id == customer_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_account(db: AsyncSession, customer_id: uuid.UUID) -> ReferralCredit:
    """Return the customer's account, creating a zeroed one if needed.

    Concurrent callers for the same customer are resolved by the unique
    constraint on ``customer_id``: the losing INSERT is a no-op.
    """
    account = await get_account(db, customer_id)
    if account is not None:
        return account

    dialect = db.get_bind().dialect.name
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    await db.execute(
        insert(ReferralCredit)
        .values(
            id=uuid.uuid4(),
            customer_id=customer_id,
            total_earned=0,
            total_used=0,
            available_balance=0,
        )
        .on_conflict_do_nothing(index_elements=["customer_id"])
    )
    account = await get_account(db, customer_id)
    logger.info("referral_credit_account_opened", customer_id=str(customer_id))
    return account


async def add_credit(db: AsyncSession, customer_id: uuid.UUID, amount: int) -> ReferralCredit:
    _validate_amount(amount)
    await get_or_create_account(db, customer_id)

    await db.execute(
        update(ReferralCredit)
        .where(ReferralCredit.customer_id == customer_id)
        .values(
            total_earned=ReferralCredit.total_earned + amount,
            available_balance=ReferralCredit.available_balance + amount,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    account = await get_account(db, customer_id)
    logger.info(
        "referral_credit_added",
        customer_id=str(customer_id),
        amount=amount,
        available_balance=account.available_balance,
    )
    return account


async def use_credit(db: AsyncSession, customer_id: uuid.UUID, amount: int) -> ReferralCredit:
    _validate_amount(amount)

    result = await db.execute(
        update(ReferralCredit)
        .where(
            ReferralCredit.customer_id == customer_id,
            ReferralCredit.available_balance >= amount,
        )
        .values(
            total_used=ReferralCredit.total_used + amount,
            available_balance=ReferralCredit.available_balance - amount,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        account = await get_account(db, customer_id)
        available = account.available_balance if account else 0
        logger.warning(
            "referral_credit_insufficient",
            customer_id=str(customer_id),
            requested=amount,
            available=available,
        )
        raise InsufficientBalance(customer_id, amount, available)

    account = await get_account(db, customer_id)
    logger.info(
        "referral_credit_used",
        customer_id=str(customer_id),
        amount=amount,
        available_balance=account.available_balance,
    )
    return account


async def adjust_credit(db: AsyncSession, customer_id: uuid.UUID, signed_amount: int) -> ReferralCredit:
    """Administrative override: positive amounts add credit, negative amounts consume it.

    Goes through the same guarded operations as the normal path, so an
    adjustment that would overdraw the account raises InsufficientBalance
    and changes nothing.
    """
    if isinstance(signed_amount, bool) or not isinstance(signed_amount, int) or signed_amount == 0:
        raise InvalidAmount(signed_amount)
    if signed_amount > 0:
        return await add_credit(db, customer_id, signed_amount)
    return await use_credit(db, customer_id, -signed_amount)
