import uuid

from pydantic import BaseModel, Field, field_validator


class AdjustCreditRequest(BaseModel):
    customer_id: uuid.UUID
    amount: int = Field(description="Signed amount in cents: positive adds credit, negative removes it")
    reason: str | None = Field(None, max_length=500)

    @field_validator("amount")
    @classmethod
    def amount_not_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("Amount cannot be zero")
        return v


class ReferralSettingsUpdate(BaseModel):
    enabled: bool | None = None
    tier1_amount: int | None = Field(None, ge=0)
    tier2_amount: int | None = Field(None, ge=0)
    tier3_amount: int | None = Field(None, ge=0)
    minimum_service_price: int | None = Field(None, ge=0)
    fraud_detection_enabled: bool | None = None
    block_same_address: bool | None = None
    block_same_phone_number: bool | None = None
    block_same_ip_address: bool | None = None
    max_referrals_per_day: int | None = Field(None, ge=0)
    max_referrals_per_week: int | None = Field(None, ge=0)
    welcome_email_enabled: bool | None = None
    credit_earned_email_enabled: bool | None = None


class ReferralSettingsResponse(BaseModel):
    enabled: bool
    tier1_amount: int
    tier2_amount: int
    tier3_amount: int
    minimum_service_price: int
    fraud_detection_enabled: bool
    block_same_address: bool
    block_same_phone_number: bool
    block_same_ip_address: bool
    max_referrals_per_day: int
    max_referrals_per_week: int
    welcome_email_enabled: bool
    credit_earned_email_enabled: bool

    model_config = {"from_attributes": True}
