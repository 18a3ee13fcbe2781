import uuid
from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from referral_engine.dependencies import get_orchestrator
from referral_engine.main import app
from referral_engine.services.fraud import ADDRESS_REUSED
from referral_engine.services.ledger import add_credit
from referral_engine.services.orchestrator import TickReport
from tests.factories import internal_header, make_booking, make_customer, make_settings


@pytest.mark.asyncio
async def test_internal_routes_require_token(client: AsyncClient):
    response = await client.post("/internal/referrals/process-credits")
    assert response.status_code == 401

    response = await client.post(
        "/internal/referrals/process-credits", headers={"X-Internal-Token": "wrong"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid internal token"


@pytest.mark.asyncio
async def test_attach_referral(client: AsyncClient, db: AsyncSession):
    await make_settings(db)
    john = await make_customer(db, name="John Smith", referral_code="JOHN1234")
    booking = await make_booking(db)

    response = await client.post(
        "/internal/referrals/attach",
        json={"booking_id": str(booking.id), "code": "john1234", "ip_address": "198.51.100.4"},
        headers=internal_header(),
    )

    assert response.status_code == 201
    data = response.json()
    assert data["referrer_id"] == str(john.id)
    assert data["code"] == "JOHN1234"
    assert data["status"] == "pending"
    assert data["tier"] == 1
    assert data["credit_amount"] == 1000


@pytest.mark.asyncio
async def test_attach_referral_unknown_booking(client: AsyncClient, db: AsyncSession):
    await make_settings(db)
    response = await client.post(
        "/internal/referrals/attach",
        json={"booking_id": str(uuid.uuid4()), "code": "JOHN1234"},
        headers=internal_header(),
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_attach_referral_fraud_rejected(client: AsyncClient, db: AsyncSession):
    await make_settings(db)
    await make_customer(db, referral_code="JOHN1234")
    await make_booking(db, email="a@example.com", address="123 Main St", referral_code="JOHN1234")
    booking = await make_booking(db, email="b@example.com", address="123 Main St.")

    response = await client.post(
        "/internal/referrals/attach",
        json={"booking_id": str(booking.id), "code": "JOHN1234"},
        headers=internal_header(),
    )

    assert response.status_code == 400
    assert response.json()["detail"] == {"reason": ADDRESS_REUSED, "severity": "high"}


@pytest.mark.asyncio
async def test_trigger_process_credits(client: AsyncClient):
    orchestrator = AsyncMock()
    orchestrator.process_referral_credits.return_value = TickReport(scanned=2, advanced=2, credited=2)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    response = await client.post("/internal/referrals/process-credits", headers=internal_header())

    assert response.status_code == 200
    data = response.json()
    assert data["credited"] == 2
    assert data["skipped"] is False
    orchestrator.process_referral_credits.assert_awaited_once()


@pytest.mark.asyncio
async def test_trigger_generate_codes(client: AsyncClient):
    orchestrator = AsyncMock()
    orchestrator.generate_missing_referral_codes.return_value = TickReport(scanned=1, codes_issued=1)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    response = await client.post("/internal/referrals/generate-codes", headers=internal_header())

    assert response.status_code == 200
    assert response.json()["codes_issued"] == 1


@pytest.mark.asyncio
async def test_use_credit(client: AsyncClient, db: AsyncSession):
    customer = await make_customer(db)
    await add_credit(db, customer.id, 2000)

    response = await client.post(
        "/internal/referral-credits/use",
        json={"customer_id": str(customer.id), "amount": 750},
        headers=internal_header(),
    )

    assert response.status_code == 200
    data = response.json()
    assert data["available_balance"] == 1250
    assert data["total_used"] == 750


@pytest.mark.asyncio
async def test_use_credit_insufficient(client: AsyncClient, db: AsyncSession):
    customer = await make_customer(db)
    await add_credit(db, customer.id, 500)

    response = await client.post(
        "/internal/referral-credits/use",
        json={"customer_id": str(customer.id), "amount": 750},
        headers=internal_header(),
    )

    assert response.status_code == 400
    assert "available 500" in response.json()["detail"]


@pytest.mark.asyncio
async def test_use_credit_rejects_non_positive_amount(client: AsyncClient, db: AsyncSession):
    customer = await make_customer(db)
    response = await client.post(
        "/internal/referral-credits/use",
        json={"customer_id": str(customer.id), "amount": 0},
        headers=internal_header(),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_use_credit_unknown_customer(client: AsyncClient, db: AsyncSession):
    response = await client.post(
        "/internal/referral-credits/use",
        json={"customer_id": str(uuid.uuid4()), "amount": 100},
        headers=internal_header(),
    )
    assert response.status_code == 404
