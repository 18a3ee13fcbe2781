import enum

# Stored as VARCHAR columns, not native PG ENUM types, so adding a value does
# not need an ALTER TYPE migration.


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    STAFF = "staff"


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReferralStatus(str, enum.Enum):
    # pending -> completed -> credited. A referral whose booking is cancelled
    # stays PENDING; there is no terminal failure state yet.
    PENDING = "pending"
    COMPLETED = "completed"
    CREDITED = "credited"


class FraudSeverity(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"


class AuditAction(str, enum.Enum):
    CREDIT_ADJUSTED = "referral_credit_adjusted"
    SETTINGS_UPDATED = "referral_settings_updated"
