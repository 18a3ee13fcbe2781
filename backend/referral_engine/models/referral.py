import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from referral_engine.database import Base
from referral_engine.models.enums import ReferralStatus
from referral_engine.models.types import GUID


class Referral(Base):
    __tablename__ = "referrals"
    __table_args__ = (
        CheckConstraint("tier >= 1 AND tier <= 3", name="ck_referral_tier_range"),
        CheckConstraint("credit_amount >= 0", name="ck_referral_credit_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'credited')", name="ck_referral_status_values"
        ),
        Index("ix_referral_referrer_status", "referrer_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    referrer_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    # One referral per booking; the unique constraint is what keeps
    # concurrent attach calls from creating two.
    referred_booking_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("bookings.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    referred_customer_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("customers.id", ondelete="SET NULL"), nullable=True
    )
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[ReferralStatus] = mapped_column(
        String(20), nullable=False, default=ReferralStatus.PENDING, index=True
    )
    tier: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    credit_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    credited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    referrer = relationship("Customer", foreign_keys=[referrer_id], lazy="raise")
    booking = relationship("Booking", foreign_keys=[referred_booking_id], lazy="raise")
