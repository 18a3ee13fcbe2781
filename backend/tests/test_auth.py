import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from referral_engine.auth.service import create_access_token, decode_access_token
from referral_engine.models.user import User
from tests.factories import auth_header


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient, admin_user: User):
    response = await client.post(
        "/auth/login", json={"email": "ADMIN@test.com", "password": "password123"}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["expires_in"] > 0
    assert decode_access_token(data["access_token"])["sub"] == str(admin_user.id)
    assert response.headers["cache-control"] == "no-store"


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, admin_user: User):
    response = await client.post(
        "/auth/login", json={"email": "admin@test.com", "password": "wrong-password"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_login_unknown_email(client: AsyncClient):
    response = await client.post(
        "/auth/login", json={"email": "nobody@test.com", "password": "password123"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_login_inactive_user(client: AsyncClient, db: AsyncSession, admin_user: User):
    admin_user.is_active = False
    await db.flush()
    response = await client.post(
        "/auth/login", json={"email": "admin@test.com", "password": "password123"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_invalid_token_rejected(client: AsyncClient, admin_user: User):
    response = await client.get(
        "/admin/referrals/stats", headers={"Authorization": "Bearer not-a-token"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_deactivated_user_token_rejected(client: AsyncClient, db: AsyncSession, admin_user: User):
    headers = auth_header(admin_user)
    admin_user.is_active = False
    await db.flush()
    response = await client.get("/admin/referrals/stats", headers=headers)
    assert response.status_code == 403


def test_access_token_round_trip():
    token = create_access_token("1234")
    payload = decode_access_token(token)
    assert payload["sub"] == "1234"
    assert payload["type"] == "access"
