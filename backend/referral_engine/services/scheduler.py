"""APScheduler wiring for the referral ticks.

Only the process started with SCHEDULER_ENABLED=true runs these jobs; every
other instance relies on an external cron calling the internal trigger
endpoints. ``max_instances=1`` keeps a slow tick from overlapping the next
one in this process. Overlap with another process is harmless because every
transition in the orchestrator is a conditional claim.
"""

from datetime import datetime, timezone

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from referral_engine.config import settings
from referral_engine.database import async_session
from referral_engine.metrics import SCHEDULER_JOB_RUNS
from referral_engine.services.notifications import EmailNotificationSender
from referral_engine.services.orchestrator import ReferralOrchestrator

logger = structlog.get_logger()

scheduler = AsyncIOScheduler()

_orchestrator: ReferralOrchestrator | None = None


def get_orchestrator() -> ReferralOrchestrator:
    """Process-wide orchestrator so in-flight notifications can be drained on shutdown."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ReferralOrchestrator(
            async_session,
            EmailNotificationSender(),
            batch_size=settings.REFERRAL_BATCH_SIZE,
        )
    return _orchestrator


async def process_referral_credits_job() -> None:
    try:
        await get_orchestrator().process_referral_credits()
    except Exception:
        SCHEDULER_JOB_RUNS.labels(job_name="process_referral_credits", status="error").inc()
        logger.exception("process_referral_credits_job_failed")
        return
    SCHEDULER_JOB_RUNS.labels(job_name="process_referral_credits", status="success").inc()


async def generate_referral_codes_job() -> None:
    try:
        await get_orchestrator().generate_missing_referral_codes()
    except Exception:
        SCHEDULER_JOB_RUNS.labels(job_name="generate_referral_codes", status="error").inc()
        logger.exception("generate_referral_codes_job_failed")
        return
    SCHEDULER_JOB_RUNS.labels(job_name="generate_referral_codes", status="success").inc()


def start_scheduler() -> None:
    """Register both referral jobs and start the scheduler.

    Both jobs also run once right away.
    """
    now = datetime.now(timezone.utc)
    scheduler.add_job(
        process_referral_credits_job,
        "interval",
        minutes=settings.REFERRAL_CREDIT_INTERVAL_MINUTES,
        id="process_referral_credits",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=now,
        misfire_grace_time=300,
    )
    scheduler.add_job(
        generate_referral_codes_job,
        "interval",
        minutes=settings.REFERRAL_CODE_INTERVAL_MINUTES,
        id="generate_referral_codes",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=now,
        misfire_grace_time=900,
    )
    scheduler.start()
    logger.info(
        "scheduler_started",
        credit_interval_minutes=settings.REFERRAL_CREDIT_INTERVAL_MINUTES,
        code_interval_minutes=settings.REFERRAL_CODE_INTERVAL_MINUTES,
    )


async def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
    if _orchestrator is not None:
        await _orchestrator.drain()
    logger.info("scheduler_stopped")
