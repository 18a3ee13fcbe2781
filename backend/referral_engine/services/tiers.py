import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from referral_engine.models.enums import ReferralStatus
from referral_engine.models.referral import Referral
from referral_engine.services.program_settings import ReferralProgram

MAX_TIER = 3


@dataclass(frozen=True)
class TierReward:
    tier: int
    amount: int


def tier_for_count(credited_count: int, program: ReferralProgram) -> TierReward:
    """Reward for the next referral given how many were already credited."""
    if credited_count <= 0:
        return TierReward(tier=1, amount=program.tier1_amount)
    if credited_count == 1:
        return TierReward(tier=2, amount=program.tier2_amount)
    return TierReward(tier=MAX_TIER, amount=program.tier3_amount)


async def count_credited_referrals(db: AsyncSession, referrer_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count(Referral.id)).where(
            Referral.referrer_id == referrer_id,
            Referral.status == ReferralStatus.CREDITED,
        )
    )
    return result.scalar() or 0


async def calculate_tier(
    db: AsyncSession, referrer_id: uuid.UUID, program: ReferralProgram
) -> TierReward:
    # Only credited referrals count, so the referral being processed never
    # contributes to its own tier.
    credited = await count_credited_referrals(db, referrer_id)
    return tier_for_count(credited, program)
