"""Periodic referral processing.

Two ticks, run by the scheduler or by the internal trigger endpoints:

``process_referral_credits``
    Advances referrals whose booking is completed (pending -> completed) and
    credits them (completed -> credited). Both transitions are conditional
    UPDATEs on the expected current status; when no row is affected another
    run already did the work and nothing else happens. Crediting (tier,
    claim, ledger add) is a single transaction.

``generate_missing_referral_codes``
    Issues a code to every customer with a completed booking and no code.

Errors are handled per referral/customer: the item is rolled back, logged
and counted, and the tick moves on. Notifications go out after commit as
background tasks so a slow or failing channel never holds up crediting.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import exists, func, or_, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from referral_engine.metrics import (
    NOTIFICATION_FAILURES,
    REFERRAL_CODES_ISSUED,
    REFERRAL_CREDIT_AWARDED_CENTS,
    REFERRALS_COMPLETED,
    REFERRALS_CREDITED,
)
from referral_engine.models.booking import Booking
from referral_engine.models.customer import Customer
from referral_engine.models.enums import BookingStatus, ReferralStatus
from referral_engine.models.referral import Referral
from referral_engine.services.code_generator import issue_referral_code
from referral_engine.services.errors import CodeCollision, TransientStorageError
from referral_engine.services.ledger import add_credit
from referral_engine.services.notifications import NotificationSender
from referral_engine.services.program_settings import ReferralProgram, load_referral_program
from referral_engine.services.tiers import calculate_tier

logger = structlog.get_logger()

CODE_ISSUE_ATTEMPTS = 5


def referrer_lock(referrer_id: uuid.UUID):
    """Row lock on the referrer taken before its tier is computed.

    Serializes crediting of different referrals that share a referrer, so two
    transactions cannot read the same credited count. Compiled away on
    SQLite, which has no row locks.
    """
    return select(Customer.id).where(Customer.id == referrer_id).with_for_update()


@dataclass
class TickReport:
    skipped: bool = False
    scanned: int = 0
    advanced: int = 0
    credited: int = 0
    already_claimed: int = 0
    codes_issued: int = 0
    deferred: int = 0
    failed: int = 0
    unresolved_cancelled: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CreditOutcome:
    referral_id: uuid.UUID
    referrer: Customer
    referred_name: str
    tier: int
    amount: int


class ReferralOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationSender,
        batch_size: int = 100,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.batch_size = batch_size
        self._pending: set[asyncio.Task] = set()

    # -- notifications -------------------------------------------------------

    def _dispatch(
        self,
        kind: str,
        send: Callable[..., Awaitable[bool]],
        *args,
        **log_context,
    ) -> None:
        task = asyncio.create_task(self._deliver(kind, send, args, log_context))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, kind: str, send, args: tuple, log_context: dict) -> None:
        try:
            delivered = await send(*args)
        except Exception:
            NOTIFICATION_FAILURES.labels(kind=kind).inc()
            logger.exception("referral_notification_failed", kind=kind, **log_context)
            return
        if delivered is False:
            NOTIFICATION_FAILURES.labels(kind=kind).inc()
            logger.warning("referral_notification_not_delivered", kind=kind, **log_context)

    async def drain(self) -> None:
        """Wait for notifications still in flight (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -- credits ---------------------------------------------------------------

    async def _load_program(self, db: AsyncSession) -> ReferralProgram:
        try:
            return await load_referral_program(db)
        except OperationalError as exc:
            raise TransientStorageError(str(exc)) from exc

    async def _referrals_to_process(self, db: AsyncSession) -> list[uuid.UUID]:
        result = await db.execute(
            select(Referral.id)
            .join(Booking, Booking.id == Referral.referred_booking_id)
            .where(
                Booking.status == BookingStatus.COMPLETED,
                Booking.referral_code.is_not(None),
                Referral.status.in_([ReferralStatus.PENDING, ReferralStatus.COMPLETED]),
            )
            .order_by(Referral.created_at, Referral.id)
            .limit(self.batch_size)
        )
        return list(result.scalars().all())

    async def _count_cancelled_pending(self, db: AsyncSession) -> int:
        result = await db.execute(
            select(func.count(Referral.id))
            .join(Booking, Booking.id == Referral.referred_booking_id)
            .where(
                Booking.status == BookingStatus.CANCELLED,
                Referral.status == ReferralStatus.PENDING,
            )
        )
        return result.scalar() or 0

    async def advance_referral(self, db: AsyncSession, referral_id: uuid.UUID) -> bool:
        """pending -> completed. Returns False if the referral was not pending."""
        result = await db.execute(
            update(Referral)
            .where(Referral.id == referral_id, Referral.status == ReferralStatus.PENDING)
            .values(status=ReferralStatus.COMPLETED, completed_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    async def credit_referral(
        self, db: AsyncSession, referral_id: uuid.UUID, program: ReferralProgram
    ) -> CreditOutcome | None:
        """completed -> credited, with the ledger add, in the caller's transaction.

        Returns None without side effects when the claim affects no row.
        The caller commits on success and rolls back otherwise.
        """
        result = await db.execute(
            select(Referral.referrer_id, Booking.name)
            .join(Booking, Booking.id == Referral.referred_booking_id)
            .where(Referral.id == referral_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        referrer_id, referred_name = row

        await db.execute(referrer_lock(referrer_id))
        # History strictly before this referral: it is not credited yet.
        reward = await calculate_tier(db, referrer_id, program)

        claim = await db.execute(
            update(Referral)
            .where(Referral.id == referral_id, Referral.status == ReferralStatus.COMPLETED)
            .values(
                status=ReferralStatus.CREDITED,
                tier=reward.tier,
                credit_amount=reward.amount,
                credited_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if not claim.rowcount:
            return None

        if reward.amount > 0:
            await add_credit(db, referrer_id, reward.amount)

        referrer = await db.get(Customer, referrer_id)
        return CreditOutcome(
            referral_id=referral_id,
            referrer=referrer,
            referred_name=referred_name,
            tier=reward.tier,
            amount=reward.amount,
        )

    async def _process_one(
        self,
        db: AsyncSession,
        referral_id: uuid.UUID,
        program: ReferralProgram,
        report: TickReport,
    ) -> None:
        if await self.advance_referral(db, referral_id):
            await db.commit()
            report.advanced += 1
            REFERRALS_COMPLETED.inc()
            logger.info("referral_completed", referral_id=str(referral_id))

        outcome = await self.credit_referral(db, referral_id, program)
        if outcome is None:
            await db.rollback()
            report.already_claimed += 1
            logger.info("referral_credit_already_claimed", referral_id=str(referral_id))
            return
        await db.commit()

        report.credited += 1
        REFERRALS_CREDITED.labels(tier=str(outcome.tier)).inc()
        REFERRAL_CREDIT_AWARDED_CENTS.inc(outcome.amount)
        logger.info(
            "referral_credited",
            referral_id=str(referral_id),
            referrer_id=str(outcome.referrer.id),
            tier=outcome.tier,
            amount=outcome.amount,
        )

        if program.credit_earned_email_enabled:
            self._dispatch(
                "credit_earned",
                self.notifier.send_credit_earned,
                outcome.referrer,
                outcome.referred_name,
                outcome.amount,
                outcome.tier,
                referral_id=str(referral_id),
            )

    async def process_referral_credits(self) -> TickReport:
        report = TickReport()
        async with self.session_factory() as db:
            program = await self._load_program(db)
            if not program.enabled:
                report.skipped = True
                logger.info("referral_credits_skipped", reason="program_disabled")
                return report

            try:
                referral_ids = await self._referrals_to_process(db)
                report.unresolved_cancelled = await self._count_cancelled_pending(db)
            except OperationalError as exc:
                raise TransientStorageError(str(exc)) from exc
            await db.commit()
            report.scanned = len(referral_ids)

            for referral_id in referral_ids:
                try:
                    await self._process_one(db, referral_id, program, report)
                except OperationalError as exc:
                    # Row stays in its current state; the next tick picks it up.
                    await db.rollback()
                    report.deferred += 1
                    logger.warning(
                        "referral_credit_deferred",
                        referral_id=str(referral_id),
                        error=str(exc),
                    )
                except Exception:
                    await db.rollback()
                    report.failed += 1
                    logger.exception("referral_credit_failed", referral_id=str(referral_id))

        if report.unresolved_cancelled:
            logger.warning(
                "referral_booking_cancelled_unresolved",
                count=report.unresolved_cancelled,
            )
        logger.info("referral_credits_processed", **report.as_dict())
        return report

    # -- codes -----------------------------------------------------------------

    async def _customers_missing_codes(self, db: AsyncSession) -> list[uuid.UUID]:
        completed_booking = exists().where(
            Booking.status == BookingStatus.COMPLETED,
            or_(
                Booking.customer_id == Customer.id,
                func.lower(Booking.email) == func.lower(Customer.email),
            ),
        )
        result = await db.execute(
            select(Customer.id)
            .where(
                Customer.total_bookings > 0,
                Customer.referral_code.is_(None),
                completed_booking,
            )
            .order_by(Customer.created_at, Customer.id)
            .limit(self.batch_size)
        )
        return list(result.scalars().all())

    async def _issue_code(self, db: AsyncSession, customer_id: uuid.UUID) -> tuple[Customer, str] | None:
        last_code = ""
        for attempt in range(1, CODE_ISSUE_ATTEMPTS + 1):
            customer = await db.get(Customer, customer_id, populate_existing=True)
            if customer is None or customer.referral_code is not None:
                return None
            try:
                code = await issue_referral_code(db, customer)
            except CodeCollision as exc:
                await db.rollback()
                last_code = exc.code
                logger.info(
                    "referral_code_collision",
                    customer_id=str(customer_id),
                    code=exc.code,
                    attempt=attempt,
                )
                continue
            if code is None:
                await db.rollback()
                return None
            await db.commit()
            return customer, code
        raise CodeCollision(last_code)

    async def generate_missing_referral_codes(self) -> TickReport:
        report = TickReport()
        async with self.session_factory() as db:
            program = await self._load_program(db)
            if not program.enabled:
                report.skipped = True
                logger.info("referral_codes_skipped", reason="program_disabled")
                return report

            try:
                customer_ids = await self._customers_missing_codes(db)
            except OperationalError as exc:
                raise TransientStorageError(str(exc)) from exc
            await db.commit()
            report.scanned = len(customer_ids)

            for customer_id in customer_ids:
                try:
                    issued = await self._issue_code(db, customer_id)
                except OperationalError as exc:
                    await db.rollback()
                    report.deferred += 1
                    logger.warning(
                        "referral_code_deferred",
                        customer_id=str(customer_id),
                        error=str(exc),
                    )
                    continue
                except Exception:
                    await db.rollback()
                    report.failed += 1
                    logger.exception("referral_code_failed", customer_id=str(customer_id))
                    continue

                if issued is None:
                    report.already_claimed += 1
                    continue
                customer, code = issued
                report.codes_issued += 1
                REFERRAL_CODES_ISSUED.inc()
                if program.welcome_email_enabled:
                    self._dispatch(
                        "welcome",
                        self.notifier.send_welcome,
                        customer,
                        code,
                        customer_id=str(customer_id),
                    )

        logger.info("referral_codes_processed", **report.as_dict())
        return report
