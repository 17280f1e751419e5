"""FastAPI application for the registration spam guard.

Provides:
- Form timing tokens for the registration page
- Registration spam checks (allow / review / block)
- Live email + name validation
- Admin IP reputation management

Flow:
1. POST /spam/timing-token - When the registration form is rendered
2. POST /spam/check - When the form is submitted
3. POST /spam/outcome - When the account is confirmed or found to be spam
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from pydantic import BaseModel

from guard_api.admin import admin_router
from guard_api.db import create_engine, create_session_factory, init_db
from guard_api.security.audit_sink import DatabaseAuditSink
from guard_api.spam import spam_router
from spam_guard import AuditLogger, MemoryStore, SpamGuard, SpamGuardSettings

load_dotenv(".env.local")
load_dotenv()  # Also try default .env

logger = logging.getLogger("guard-api")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    store: str


def create_app(
    settings: SpamGuardSettings | None = None,
    guard: SpamGuard | None = None,
) -> FastAPI:
    """Build the API.

    Args:
        settings: Loaded from the environment at startup when omitted.
        guard: Prebuilt guard (tests inject one over a MemoryStore).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build the guard on startup, flush audit events on shutdown."""
        app_settings = settings or SpamGuardSettings.from_env()
        engine = None

        app_guard = guard
        if app_guard is None:
            audit = None
            if app_settings.audit_database_url:
                engine = create_engine(app_settings.audit_database_url)
                await init_db(engine)
                audit = AuditLogger(
                    DatabaseAuditSink(create_session_factory(engine)),
                    max_queue_size=app_settings.audit_queue_size,
                )
            app_guard = SpamGuard.from_settings(app_settings, audit=audit)

        if isinstance(app_guard.store, MemoryStore):
            await app_guard.store.start_sweep_task(app_settings.sweep_interval_seconds)
        app_guard.audit.start()

        app.state.settings = app_settings
        app.state.guard = app_guard
        logger.info(f"Spam guard ready (store={app_guard.store.name})")
        yield
        await app_guard.close()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(
        title="Registration Spam Guard API",
        description="Bot and throwaway-signup detection for the registration flow",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(spam_router)
    app.include_router(admin_router)

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(timezone.utc).isoformat(),
            store=request.app.state.guard.store.name,
        )

    return app


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = create_app()
