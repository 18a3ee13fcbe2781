"""Referral notifications (welcome with code, credit earned).

Sent through the Resend API. In dev mode (no RESEND_API_KEY) the message is
logged and skipped. Senders return False instead of raising on delivery
failures; the orchestrator still guards every call since the channel is
outside our control.
"""

from html import escape
from typing import Protocol

import httpx
import structlog

from referral_engine.config import settings
from referral_engine.models.customer import Customer
from referral_engine.utils.log_mask import mask_email

logger = structlog.get_logger()

RESEND_API_URL = "https://api.resend.com/emails"

_email_client: httpx.AsyncClient | None = None


def _get_email_client() -> httpx.AsyncClient:
    global _email_client
    if _email_client is None or _email_client.is_closed:
        _email_client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=5.0, read=10.0, write=5.0, pool=5.0),
        )
    return _email_client


async def close_email_client() -> None:
    global _email_client
    if _email_client is not None and not _email_client.is_closed:
        await _email_client.aclose()
    _email_client = None


def format_cents(amount: int) -> str:
    return f"${amount / 100:.2f}"


TIER_LABELS = {1: "1st", 2: "2nd", 3: "3rd+"}


class NotificationSender(Protocol):
    async def send_welcome(self, customer: Customer, code: str) -> bool: ...

    async def send_credit_earned(
        self, referrer: Customer, referred_name: str, amount: int, tier: int
    ) -> bool: ...


async def send_email(to_email: str, subject: str, html: str, event: str) -> bool:
    """POST one email to Resend. Returns True if it was accepted."""
    if not settings.RESEND_API_KEY:
        logger.warning(
            "resend_api_key_not_set",
            msg="RESEND_API_KEY not configured, skipping email send (dev mode)",
            email=mask_email(to_email),
            notification=event,
        )
        return False

    payload = {
        "from": settings.EMAIL_FROM,
        "to": [to_email],
        "subject": subject,
        "html": html,
    }
    try:
        response = await _get_email_client().post(
            RESEND_API_URL,
            json=payload,
            headers={
                "Authorization": f"Bearer {settings.RESEND_API_KEY}",
                "Content-Type": "application/json",
            },
        )
    except httpx.HTTPError as exc:
        logger.error(f"{event}_email_error", email=mask_email(to_email), error=str(exc))
        return False

    if response.is_success:
        logger.info(f"{event}_email_sent", email=mask_email(to_email))
        return True
    logger.error(
        f"{event}_email_failed",
        email=mask_email(to_email),
        status_code=response.status_code,
    )
    return False


class EmailNotificationSender:
    def __init__(self, business_name: str | None = None, frontend_url: str | None = None):
        self.business_name = business_name or settings.BUSINESS_NAME
        self.frontend_url = frontend_url or settings.FRONTEND_URL

    async def send_welcome(self, customer: Customer, code: str) -> bool:
        first_name = escape(customer.name.split()[0] if customer.name.strip() else "there")
        business = escape(self.business_name)
        book_link = escape(f"{self.frontend_url}/book?ref={code}")
        html = (
            f"<h2>Thanks for choosing {business}, {first_name}!</h2>"
            "<p>Share your personal referral code with friends and family:</p>"
            '<div style="text-align:center;margin:24px 0;">'
            f'<span style="font-size:28px;font-weight:bold;letter-spacing:4px;'
            f'background:#f0f0f0;padding:16px 32px;border-radius:8px;">{escape(code)}</span>'
            "</div>"
            "<p>Every time someone books with your code and their service is completed, "
            "you earn store credit toward your next booking. The more friends you refer, "
            "the more each referral is worth.</p>"
            f'<p><a href="{book_link}">Share your booking link</a></p>'
        )
        return await send_email(
            customer.email,
            f"Your {self.business_name} referral code: {code}",
            html,
            event="referral_welcome",
        )

    async def send_credit_earned(
        self, referrer: Customer, referred_name: str, amount: int, tier: int
    ) -> bool:
        first_name = escape(referrer.name.split()[0] if referrer.name.strip() else "there")
        friend = escape(referred_name.split()[0] if referred_name.strip() else "A friend")
        label = TIER_LABELS.get(tier, "3rd+")
        html = (
            f"<h2>You earned {format_cents(amount)} in referral credit!</h2>"
            f"<p>Hi {first_name},</p>"
            f"<p>{friend} just completed a service booked with your referral code. "
            f"We've added <strong>{format_cents(amount)}</strong> to your account "
            f"(your {label} referral).</p>"
            "<p>Your credit is applied automatically to your next booking.</p>"
        )
        return await send_email(
            referrer.email,
            f"You earned {format_cents(amount)} referral credit",
            html,
            event="referral_credit_earned",
        )
