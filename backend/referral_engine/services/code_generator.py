import re
import secrets
from collections.abc import Awaitable, Callable

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from referral_engine.models.customer import Customer
from referral_engine.services.errors import CodeCollision

logger = structlog.get_logger()

_NON_CODE_CHARS = re.compile(r"[^A-Z0-9]")
FALLBACK_BASE = "FRIEND"
MAX_BASE_LENGTH = 16


def code_base(customer_name: str) -> str:
    """First word of the name, upper-cased, letters and digits only."""
    words = (customer_name or "").split()
    first = words[0].upper() if words else ""
    base = _NON_CODE_CHARS.sub("", first)[:MAX_BASE_LENGTH]
    return base or FALLBACK_BASE


def _candidate(base: str) -> str:
    return f"{base}{1000 + secrets.randbelow(9000)}"


async def generate_code(
    customer_name: str,
    is_taken: Callable[[str], Awaitable[bool]],
) -> str:
    """Return a code like ``JOHN4821`` that ``is_taken`` reports as free.

    Uniqueness is re-checked on every attempt: codes can also be issued by
    the booking flow while this runs, so nothing is cached between tries.
    """
    base = code_base(customer_name)
    code = _candidate(base)
    while await is_taken(code):
        code = _candidate(base)
    return code


async def is_code_taken(db: AsyncSession, code: str) -> bool:
    result = await db.execute(
        select(Customer.id).where(Customer.referral_code == code).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def generate_referral_code(db: AsyncSession, customer_name: str) -> str:
    async def _taken(code: str) -> bool:
        return await is_code_taken(db, code)

    return await generate_code(customer_name, _taken)


async def issue_referral_code(db: AsyncSession, customer: Customer) -> str | None:
    """Generate and persist a code for a customer that has none.

    Returns the new code, or None if another writer issued one first.
    Raises CodeCollision when the unique index rejects the code; the session
    must then be rolled back before retrying.
    """
    code = await generate_referral_code(db, customer.name)
    try:
        result = await db.execute(
            update(Customer)
            .where(Customer.id == customer.id, Customer.referral_code.is_(None))
            .values(referral_code=code)
            .execution_options(synchronize_session=False)
        )
        await db.flush()
    except IntegrityError as exc:
        raise CodeCollision(code) from exc

    if not result.rowcount:
        logger.info("referral_code_already_issued", customer_id=str(customer.id))
        return None

    set_committed_value(customer, "referral_code", code)
    logger.info("referral_code_issued", customer_id=str(customer.id), code=code)
    return code
