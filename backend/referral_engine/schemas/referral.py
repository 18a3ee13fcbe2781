import uuid

from pydantic import BaseModel, Field

from referral_engine.models.enums import ReferralStatus


class ReferralProgramResponse(BaseModel):
    enabled: bool
    tier1_amount: int
    tier2_amount: int
    tier3_amount: int


class ValidateReferralRequest(BaseModel):
    code: str = Field(min_length=1, max_length=32)
    email: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=40)
    address: str | None = Field(None, max_length=500)


class ValidateReferralResponse(BaseModel):
    valid: bool
    reason: str | None = None
    referrer_name: str | None = None
    tier: int | None = None
    discount_amount: int | None = None


class AttachReferralRequest(BaseModel):
    booking_id: uuid.UUID
    code: str = Field(min_length=1, max_length=32)
    ip_address: str | None = Field(None, max_length=45)


class AttachReferralResponse(BaseModel):
    referral_id: uuid.UUID
    referrer_id: uuid.UUID
    code: str
    status: str
    tier: int
    credit_amount: int

    @classmethod
    def from_referral(cls, referral) -> "AttachReferralResponse":
        return cls(
            referral_id=referral.id,
            referrer_id=referral.referrer_id,
            code=referral.code,
            status=ReferralStatus(referral.status).value,
            tier=referral.tier,
            credit_amount=referral.credit_amount,
        )


class UseCreditRequest(BaseModel):
    customer_id: uuid.UUID
    amount: int = Field(gt=0, description="Amount in cents")


class CreditBalanceResponse(BaseModel):
    customer_id: uuid.UUID
    total_earned: int
    total_used: int
    available_balance: int

    model_config = {"from_attributes": True}


class TickReportResponse(BaseModel):
    skipped: bool
    scanned: int
    advanced: int
    credited: int
    already_claimed: int
    codes_issued: int
    deferred: int
    failed: int
    unresolved_cancelled: int
