from referral_engine.models.audit_log import AuditLog
from referral_engine.models.booking import Booking
from referral_engine.models.customer import Customer
from referral_engine.models.referral import Referral
from referral_engine.models.referral_credit import ReferralCredit
from referral_engine.models.referral_settings import ReferralSettings
from referral_engine.models.user import User

__all__ = [
    "AuditLog",
    "Booking",
    "Customer",
    "Referral",
    "ReferralCredit",
    "ReferralSettings",
    "User",
]
