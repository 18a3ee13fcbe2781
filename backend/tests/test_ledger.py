import random

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from referral_engine.services.errors import InsufficientBalance, InvalidAmount
from referral_engine.services.ledger import (
    add_credit,
    adjust_credit,
    get_account,
    get_or_create_account,
    use_credit,
)
from tests.factories import make_customer


@pytest.mark.asyncio
async def test_get_or_create_account_starts_at_zero(db: AsyncSession):
    customer = await make_customer(db)

    account = await get_or_create_account(db, customer.id)
    again = await get_or_create_account(db, customer.id)

    assert account.id == again.id
    assert (account.total_earned, account.total_used, account.available_balance) == (0, 0, 0)


@pytest.mark.asyncio
async def test_add_credit_creates_account(db: AsyncSession):
    customer = await make_customer(db)
    assert await get_account(db, customer.id) is None

    account = await add_credit(db, customer.id, 1000)

    assert account.total_earned == 1000
    assert account.available_balance == 1000
    assert account.total_used == 0


@pytest.mark.asyncio
async def test_use_credit_reduces_balance(db: AsyncSession):
    customer = await make_customer(db)
    await add_credit(db, customer.id, 2500)

    account = await use_credit(db, customer.id, 1000)

    assert account.total_earned == 2500
    assert account.total_used == 1000
    assert account.available_balance == 1500


@pytest.mark.asyncio
async def test_use_credit_insufficient_balance_changes_nothing(db: AsyncSession):
    customer = await make_customer(db)
    await add_credit(db, customer.id, 500)

    with pytest.raises(InsufficientBalance) as exc_info:
        await use_credit(db, customer.id, 501)

    assert exc_info.value.available == 500
    account = await get_account(db, customer.id)
    assert account.available_balance == 500
    assert account.total_used == 0


@pytest.mark.asyncio
async def test_use_credit_without_account(db: AsyncSession):
    customer = await make_customer(db)

    with pytest.raises(InsufficientBalance) as exc_info:
        await use_credit(db, customer.id, 100)

    assert exc_info.value.available == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -1, -1000, 10.5, "100", True])
async def test_invalid_amounts_rejected(db: AsyncSession, amount):
    customer = await make_customer(db)
    await add_credit(db, customer.id, 1000)

    with pytest.raises(InvalidAmount):
        await add_credit(db, customer.id, amount)
    with pytest.raises(InvalidAmount):
        await use_credit(db, customer.id, amount)

    account = await get_account(db, customer.id)
    assert account.available_balance == 1000


@pytest.mark.asyncio
async def test_adjust_credit_both_directions(db: AsyncSession):
    customer = await make_customer(db)

    account = await adjust_credit(db, customer.id, 1500)
    assert account.available_balance == 1500

    account = await adjust_credit(db, customer.id, -400)
    assert account.available_balance == 1100
    assert account.total_used == 400

    with pytest.raises(InsufficientBalance):
        await adjust_credit(db, customer.id, -5000)
    with pytest.raises(InvalidAmount):
        await adjust_credit(db, customer.id, 0)


@pytest.mark.asyncio
async def test_random_operations_keep_balance_consistent(db: AsyncSession):
    """available = earned - used and available >= 0 after every operation."""
    customer = await make_customer(db)
    rng = random.Random(42)
    earned = used = 0

    for _ in range(200):
        amount = rng.randint(1, 3000)
        if rng.random() < 0.5:
            await add_credit(db, customer.id, amount)
            earned += amount
        else:
            try:
                await use_credit(db, customer.id, amount)
                used += amount
            except InsufficientBalance:
                pass

        account = await get_account(db, customer.id)
        if account is None:
            continue
        assert account.available_balance == account.total_earned - account.total_used
        assert account.available_balance >= 0
        assert account.total_used <= account.total_earned

    account = await get_account(db, customer.id)
    assert account.total_earned == earned
    assert account.total_used == used
