import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, func
from sqlalchemy.orm import Mapped, mapped_column

from referral_engine.database import Base
from referral_engine.models.types import GUID


class ReferralCredit(Base):
    """Per-customer store credit account.

    Only ``services.ledger`` mutates these rows, always with a single
    read-modify-write UPDATE so the balance columns move together.
    """

    __tablename__ = "referral_credits"
    __table_args__ = (
        CheckConstraint("total_earned >= 0", name="ck_referral_credit_earned_positive"),
        CheckConstraint("total_used >= 0", name="ck_referral_credit_used_positive"),
        CheckConstraint("available_balance >= 0", name="ck_referral_credit_balance_positive"),
        CheckConstraint("total_used <= total_earned", name="ck_referral_credit_used_le_earned"),
        CheckConstraint(
            "available_balance = total_earned - total_used", name="ck_referral_credit_balance_consistent"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    total_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
