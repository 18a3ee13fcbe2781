"""Referral program configuration as an explicit value.

The ``referral_settings`` row is read once per tick or request and turned into
an immutable ``ReferralProgram`` that is passed down to the fraud detector,
tier calculator and orchestrator. Nothing in the engine reads the row
directly, so tests can hand in any configuration.
"""

from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from referral_engine.models.referral_settings import ReferralSettings

logger = structlog.get_logger()


class ReferralProgram(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    enabled: bool = True
    tier1_amount: int = 1000
    tier2_amount: int = 1500
    tier3_amount: int = 2000
    minimum_service_price: int = 5000
    fraud_detection_enabled: bool = True
    block_same_address: bool = True
    block_same_phone_number: bool = True
    block_same_ip_address: bool = True
    max_referrals_per_day: int = 10
    max_referrals_per_week: int = 30
    welcome_email_enabled: bool = True
    credit_earned_email_enabled: bool = True

    @classmethod
    def unconfigured(cls) -> "ReferralProgram":
        """Program used when no settings row exists: everything off."""
        return cls(
            enabled=False,
            fraud_detection_enabled=False,
            welcome_email_enabled=False,
            credit_earned_email_enabled=False,
        )


async def get_settings_row(db: AsyncSession) -> ReferralSettings | None:
    result = await db.execute(
        select(ReferralSettings).order_by(ReferralSettings.created_at).limit(1)
    )
    return result.scalar_one_or_none()


async def load_referral_program(db: AsyncSession) -> ReferralProgram:
    row = await get_settings_row(db)
    if row is None:
        return ReferralProgram.unconfigured()
    return ReferralProgram.model_validate(row)


async def ensure_settings_row(db: AsyncSession) -> ReferralSettings:
    """Return the settings row, creating it with the default program if missing."""
    row = await get_settings_row(db)
    if row is not None:
        return row
    defaults = ReferralProgram()
    row = ReferralSettings(**defaults.model_dump())
    db.add(row)
    await db.flush()
    await db.refresh(row)
    logger.info("referral_settings_initialized")
    return row


async def update_settings(db: AsyncSession, changes: dict[str, Any]) -> ReferralSettings:
    """Apply a partial update to the settings row (admin only)."""
    row = await ensure_settings_row(db)
    for field, value in changes.items():
        if field not in ReferralProgram.model_fields:
            raise ValueError(f"Unknown referral setting: {field}")
        setattr(row, field, value)
    await db.flush()
    await db.refresh(row)
    logger.info("referral_settings_updated", fields=sorted(changes))
    return row
