from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from referral_engine.models.customer import Customer
from referral_engine.services.notifications import (
    EmailNotificationSender,
    close_email_client,
    format_cents,
    send_email,
)


def _customer(name: str = "John Smith", email: str = "john@example.com") -> Customer:
    return Customer(name=name, email=email, phone="+1 555 0000000")


def _client(is_success: bool = True, status_code: int = 200) -> AsyncMock:
    response = MagicMock()
    response.is_success = is_success
    response.status_code = status_code
    client = AsyncMock()
    client.post = AsyncMock(return_value=response)
    return client


def test_format_cents():
    assert format_cents(1000) == "$10.00"
    assert format_cents(1550) == "$15.50"


@pytest.mark.asyncio
async def test_send_email_without_api_key_skips():
    """Dev mode: no key, nothing is posted."""
    client = _client()
    with patch("referral_engine.services.notifications.settings") as mock_s, \
         patch("referral_engine.services.notifications._get_email_client", return_value=client):
        mock_s.RESEND_API_KEY = ""
        result = await send_email("john@example.com", "Hi", "<p>Hi</p>", event="test")

    assert result is False
    client.post.assert_not_called()


@pytest.mark.asyncio
async def test_send_email_api_failure():
    client = _client(is_success=False, status_code=500)
    with patch("referral_engine.services.notifications.settings") as mock_s, \
         patch("referral_engine.services.notifications._get_email_client", return_value=client):
        mock_s.RESEND_API_KEY = "re_test_123"
        result = await send_email("john@example.com", "Hi", "<p>Hi</p>", event="test")

    assert result is False


@pytest.mark.asyncio
async def test_send_email_network_error():
    client = AsyncMock()
    client.post = AsyncMock(side_effect=httpx.ConnectError("boom"))
    with patch("referral_engine.services.notifications.settings") as mock_s, \
         patch("referral_engine.services.notifications._get_email_client", return_value=client):
        mock_s.RESEND_API_KEY = "re_test_123"
        result = await send_email("john@example.com", "Hi", "<p>Hi</p>", event="test")

    assert result is False


@pytest.mark.asyncio
async def test_welcome_email_contains_code():
    client = _client()
    sender = EmailNotificationSender(business_name="Sparkle Cleaning", frontend_url="https://example.com")
    with patch("referral_engine.services.notifications.settings") as mock_s, \
         patch("referral_engine.services.notifications._get_email_client", return_value=client):
        mock_s.RESEND_API_KEY = "re_test_123"
        mock_s.EMAIL_FROM = "Referrals <noreply@example.com>"
        result = await sender.send_welcome(_customer(), "JOHN1234")

    assert result is True
    payload = client.post.call_args[1]["json"]
    assert payload["to"] == ["john@example.com"]
    assert "JOHN1234" in payload["subject"]
    assert "JOHN1234" in payload["html"]
    assert "https://example.com/book?ref=JOHN1234" in payload["html"]


@pytest.mark.asyncio
async def test_credit_earned_email_escapes_names():
    client = _client()
    sender = EmailNotificationSender(business_name="Sparkle", frontend_url="https://example.com")
    with patch("referral_engine.services.notifications.settings") as mock_s, \
         patch("referral_engine.services.notifications._get_email_client", return_value=client):
        mock_s.RESEND_API_KEY = "re_test_123"
        result = await sender.send_credit_earned(_customer(), "<b>Eve</b> Smith", 1500, 2)

    assert result is True
    payload = client.post.call_args[1]["json"]
    assert payload["subject"] == "You earned $15.00 referral credit"
    assert "&lt;b&gt;Eve&lt;/b&gt;" in payload["html"]
    assert "2nd referral" in payload["html"]


@pytest.mark.asyncio
async def test_close_email_client_is_safe_twice():
    await close_email_client()
    await close_email_client()
