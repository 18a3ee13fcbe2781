from contextlib import asynccontextmanager

import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from referral_engine.admin.routes import router as admin_router
from referral_engine.auth.routes import router as auth_router
from referral_engine.config import settings
from referral_engine.database import async_session
from referral_engine.internal.routes import router as internal_router
from referral_engine.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from referral_engine.referrals.routes import router as referrals_router
from referral_engine.services.notifications import close_email_client
from referral_engine.services.program_settings import ensure_settings_row
from referral_engine.utils.rate_limit import limiter

# Configure structlog: JSON in production, console in development
processors = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]
if settings.is_production:
    processors.append(structlog.processors.format_exc_info)
    processors.append(structlog.processors.JSONRenderer())
else:
    processors.append(structlog.dev.ConsoleRenderer())

structlog.configure(
    processors=processors,
    wrapper_class=structlog.make_filtering_bound_logger(0),
)

logger = structlog.get_logger()

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=0.1,
        environment=settings.APP_ENV,
        send_default_pii=False,
    )


async def _check_alembic_migration_version() -> None:
    """Log a warning if the database is not at the alembic head. Never raises."""
    try:
        from alembic.config import Config as AlembicConfig
        from alembic.script import ScriptDirectory

        script = ScriptDirectory.from_config(AlembicConfig("alembic.ini"))
        head_rev = script.get_current_head()

        async with async_session() as session:
            conn = await session.connection()

            def _get_current_rev(connection):
                if not connection.dialect.has_table(connection, "alembic_version"):
                    return None
                row = connection.execute(text("SELECT version_num FROM alembic_version")).fetchone()
                return row[0] if row else None

            current_rev = await conn.run_sync(_get_current_rev)

        if current_rev is None:
            logger.warning("alembic_version_check", status="no_alembic_version_table")
        elif current_rev != head_rev:
            logger.warning(
                "alembic_version_mismatch",
                current=current_rev,
                head=head_rev,
                message="Run 'alembic upgrade head'.",
            )
        else:
            logger.info("alembic_version_ok", version=current_rev)
    except Exception as exc:
        logger.warning("alembic_version_check_failed", error=str(exc))


async def _initialize_referral_settings() -> None:
    """Create the default program settings row if the table is empty."""
    try:
        async with async_session() as db:
            await ensure_settings_row(db)
            await db.commit()
    except Exception:
        logger.exception("referral_settings_init_failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    from referral_engine.services.scheduler import shutdown_scheduler, start_scheduler

    logger.info("referral_engine_startup", env=settings.APP_ENV)
    await _check_alembic_migration_version()
    await _initialize_referral_settings()

    if not settings.INTERNAL_API_TOKEN:
        logger.warning(
            "internal_api_token_empty",
            message="INTERNAL_API_TOKEN is not set, internal endpoints reject every call.",
        )

    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    else:
        logger.info("scheduler_disabled", message="Referral ticks run from the internal trigger endpoints.")

    yield

    await shutdown_scheduler()
    await close_email_client()
    logger.info("referral_engine_shutdown")


app = FastAPI(
    title="Referral Credits API",
    description="Referral codes, fraud screening and tiered store credit",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions and return a safe 500 outside development."""
    logger.exception("unhandled_exception", path=request.url.path)
    if settings.APP_ENV != "development":
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
    raise exc


# Middleware is LIFO: the last one added runs first.
if settings.is_production:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["Authorization", "Content-Type"],
    )
    if not settings.cors_origins_list:
        logger.warning("cors_origins_empty_in_production", app_env=settings.APP_ENV)
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL, "http://localhost:3000"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(SecurityHeadersMiddleware, is_production=settings.is_production)
app.add_middleware(RequestContextMiddleware)


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/health", "/metrics"],
).instrument(app)


@app.get("/metrics", include_in_schema=False)
async def metrics_endpoint(request: Request):
    """Prometheus metrics endpoint (protected by API key when one is set)."""
    from prometheus_client import generate_latest
    from starlette.responses import Response as StarletteResponse

    if settings.is_production and not settings.METRICS_API_KEY:
        raise HTTPException(status_code=503, detail="Metrics not available")

    if settings.METRICS_API_KEY:
        api_key = request.headers.get("x-metrics-key", "")
        if api_key != settings.METRICS_API_KEY:
            raise HTTPException(status_code=403, detail="Invalid metrics API key")

    return StarletteResponse(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(referrals_router, prefix="/referrals", tags=["referrals"])
app.include_router(internal_router, prefix="/internal", tags=["internal"])
app.include_router(admin_router)


@app.get("/health")
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Database, Redis and scheduler status."""
    result: dict = {"status": "ok", "database": "connected", "redis": "connected"}

    try:
        async with async_session() as db:
            await db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("health_database_unreachable")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected", "redis": "unknown"},
        )

    # Redis only backs rate limiting; the service works without it.
    try:
        import redis.asyncio as aioredis

        r = aioredis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
        await r.ping()
        await r.aclose()
    except Exception:
        result["redis"] = "unavailable"

    from referral_engine.services.scheduler import scheduler

    if not settings.SCHEDULER_ENABLED:
        result["scheduler"] = "disabled"
    else:
        result["scheduler"] = "running" if scheduler.running else "stopped"
        if not scheduler.running:
            result["status"] = "degraded"
    return result
