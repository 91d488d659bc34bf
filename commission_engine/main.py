"""
Commission Engine - commission calculation and payout service

Main FastAPI application with:
- Sale ingest from the order/checkout subsystem
- Organizer API (commission plan, ledger, payouts, disputes)
- Agent API (earnings, tier progress, disputes)
- Scheduled tier rollover and notification delivery
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select

from commission_engine.api import api_router
from commission_engine.auth.middleware import AuthMiddleware
from commission_engine.config import settings
from commission_engine.db import get_db_context
from commission_engine.models import User, UserRole
from commission_engine.scheduler.jobs import scheduler, setup_scheduler
from commission_engine.services.errors import (
    ConfigurationError,
    DuplicateAttributionError,
    InsufficientDataError,
    InvalidRecordStateError,
    NotFoundError,
    PermissionDeniedError,
    SerializationConflictError,
)
from commission_engine.utils.password import hash_password, password_problems

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def ensure_organizer_account() -> None:
    """Create the bootstrap organizer if no organizer exists yet."""
    async with get_db_context() as db:
        result = await db.execute(
            select(User).where(User.role == UserRole.ORGANIZER).limit(1)
        )
        if result.scalar_one_or_none():
            return

        problems = password_problems(settings.organizer_password)
        if problems:
            logger.warning(f"Bootstrap organizer password is weak: {', '.join(problems)}")

        db.add(User(
            username=settings.organizer_username,
            password_hash=hash_password(settings.organizer_password),
            role=UserRole.ORGANIZER,
            display_name="Organizer",
            is_active=True,
        ))
        logger.info(f"Organizer account created: {settings.organizer_username}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
    - Creates the organizer account if none exists
    - Starts the rollover and outbox jobs

    Shutdown:
    - Stops the scheduler
    """
    logger.info("Starting commission engine...")

    await ensure_organizer_account()

    if settings.scheduler_enabled:
        setup_scheduler()
        scheduler.start()

    logger.info("Commission engine started")

    yield

    logger.info("Shutting down commission engine...")
    if scheduler.running:
        scheduler.shutdown(wait=False)


app = FastAPI(
    title="Commission Engine",
    description="Agent commission calculation and payout service",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

app.add_middleware(AuthMiddleware)

app.include_router(api_router)


# Domain errors -> HTTP

@app.exception_handler(DuplicateAttributionError)
async def duplicate_handler(request: Request, exc: DuplicateAttributionError):
    existing = exc.existing
    return JSONResponse(
        status_code=200,
        content={
            "duplicate": True,
            "order_id": existing.order_id,
            "attribution_id": existing.id,
            "commission_amount": str(existing.commission_amount),
        },
    )


@app.exception_handler(InsufficientDataError)
async def insufficient_data_handler(request: Request, exc: InsufficientDataError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(request: Request, exc: PermissionDeniedError):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidRecordStateError)
async def invalid_state_handler(request: Request, exc: InvalidRecordStateError):
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(exc),
            "blocking_record_ids": exc.record_ids,
            "current_states": {str(k): v for k, v in exc.current_states.items()},
        },
    )


@app.exception_handler(ConfigurationError)
async def configuration_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(SerializationConflictError)
async def conflict_handler(request: Request, exc: SerializationConflictError):
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc)},
        headers={"Retry-After": "1"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "commission_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
    )
