import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from referral_engine.database import Base
from referral_engine.models.enums import BookingStatus
from referral_engine.models.types import GUID


class Booking(Base):
    """Booking record written by the booking system.

    The referral engine reads status/contact data and writes only
    ``referral_code`` and ``ip_address`` when a referral is attached.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_booking_status_referral_code", "status", "referral_code"),
        Index("ix_booking_referral_code_created", "referral_code", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    service: Mapped[str] = mapped_column(String(100), nullable=False, default="standard")
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(40), nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        String(20), nullable=False, default=BookingStatus.PENDING, index=True
    )
    referral_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    # Quoted price in cents, entered once the job is priced
    actual_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
