"""Errors raised by the referral crediting engine.

Fraud rejections are not errors: they come back as ``FraudCheckResult``
values so the booking flow can show the customer a specific message.
"""


class ReferralEngineError(Exception):
    """Base class for referral engine failures."""


class InvalidAmount(ReferralEngineError):
    def __init__(self, amount: int):
        self.amount = amount
        super().__init__(f"Credit amount must be a positive integer, got {amount}")


class InsufficientBalance(ReferralEngineError):
    def __init__(self, customer_id, requested: int, available: int):
        self.customer_id = customer_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient referral credit balance: requested {requested}, available {available}"
        )


class CodeCollision(ReferralEngineError):
    """A generated code was taken between the uniqueness check and the write.

    Transient: callers regenerate and retry, it is never surfaced.
    """

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Referral code already assigned: {code}")


class TransientStorageError(ReferralEngineError):
    """Storage failed mid-tick; the next scheduled tick re-observes the row."""
