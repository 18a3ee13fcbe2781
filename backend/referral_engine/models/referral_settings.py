import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, func
from sqlalchemy.orm import Mapped, mapped_column

from referral_engine.database import Base
from referral_engine.models.types import GUID


class ReferralSettings(Base):
    """Referral program configuration (single row, edited from the admin API)."""

    __tablename__ = "referral_settings"
    __table_args__ = (
        CheckConstraint(
            "tier1_amount >= 0 AND tier2_amount >= 0 AND tier3_amount >= 0",
            name="ck_referral_settings_amounts_positive",
        ),
        CheckConstraint(
            "max_referrals_per_day >= 0 AND max_referrals_per_week >= 0",
            name="ck_referral_settings_limits_positive",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    tier1_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    tier2_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=1500)
    tier3_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=2000)
    minimum_service_price: Mapped[int] = mapped_column(Integer, nullable=False, default=5000)
    fraud_detection_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    block_same_address: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    block_same_phone_number: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    block_same_ip_address: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    max_referrals_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    max_referrals_per_week: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    welcome_email_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    credit_earned_email_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
