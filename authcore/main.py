"""
authcore application entry point.

This is the **only** file that assembles the app.  All business logic
lives in the `services/`, `db/`, and `core/` packages.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.api.v1.api import api_router
from authcore.api.v1.endpoints.auth import limiter
from authcore.core.config import Settings, get_settings
from authcore.core.events import EventSink
from authcore.core.exceptions import (
    RequestTimeout,
    app_error_response,
    register_exception_handlers,
)
from authcore.core.logging import configure_logging
from authcore.core.timeutils import Clock, utcnow
from authcore.db.base import Base
from authcore.db.session import create_engine, create_session_factory

# Ensure all models are imported so metadata.create_all can see them
from authcore.models.anonymous_session import AnonymousSession  # noqa: F401
from authcore.models.otp import OtpRecord  # noqa: F401
from authcore.models.refresh_token import RefreshToken  # noqa: F401
from authcore.models.user import User  # noqa: F401
from authcore.services.container import build_auth_services
from authcore.services.sms import SmsSender

logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = app.state.engine
    if engine is not None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialised")

    settings = app.state.settings
    logger.info("authcore v%s started (OTP test mode: %s)", settings.VERSION, settings.OTP_TEST_MODE)
    yield
    if engine is not None:
        await engine.dispose()
    logger.info("Shutdown complete")


# ── App factory ─────────────────────────────────────────────────────
def create_app(
    settings: Settings | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    sms: SmsSender | None = None,
    events: EventSink | None = None,
    clock: Clock = utcnow,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="OTP authentication core",
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # An injected session factory means the caller owns the database.
    engine = None
    if session_factory is None:
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)

    application.state.settings = settings
    application.state.engine = engine
    application.state.services = build_auth_services(
        settings, session_factory, sms=sms, events=events, clock=clock
    )

    # Per-IP rate limiting
    limiter.enabled = settings.RATE_LIMIT_ENABLED
    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Per-request deadline; cancellation rolls back any open transaction
    timeout = settings.REQUEST_TIMEOUT_SECONDS

    @application.middleware("http")
    async def enforce_request_timeout(request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("%s %s exceeded %.1fs", request.method, request.url.path, timeout)
            return app_error_response(RequestTimeout())

    # Global exception handlers (prevent stack-trace leakage)
    register_exception_handlers(application)

    # Mount API v1
    application.include_router(api_router, prefix=settings.API_V1_PREFIX)

    return application


app = create_app()


def run() -> None:
    """Serve the module-level ``app`` with uvicorn (the ``authcore`` console script)."""
    settings = get_settings()
    uvicorn.run("authcore.main:app", host=settings.HOST, port=settings.PORT, reload=False)


if __name__ == "__main__":
    run()
