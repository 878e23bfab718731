"""FastAPI application entry point for the SecureShift workflow service.

Lifecycle:
    1. Startup: Initialize logging, database (create tables in dev mode),
       Redis when locks are distributed, then wire the services.
       The recovery loop (rating window + payment sweeps) starts last.
    2. Running: Serve the REST API at /api/v1/*.
    3. Shutdown: Stop the recovery loop, wait for pending side effects,
       close Redis and the database.

Run with:
    uv run uvicorn secureshift.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from secureshift.config import get_settings
from secureshift.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from secureshift.container import WorkflowContainer


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    if getattr(app.state, "container", None) is not None:
        # Container injected by the caller (tests, embedding)
        _start_recovery(app.state.container)
        yield
        await app.state.container.recovery.stop()
        await app.state.container.side_effects.drain()
        return

    # 2. Initialize database
    from secureshift.infrastructure.database.engine import (
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()

    # 3. Initialize Redis (distributed locks only)
    from secureshift.infrastructure.locks import connect_redis

    redis = None
    if settings.lock_backend == "redis":
        try:
            redis = await connect_redis(settings.redis_url)
        except Exception as exc:
            logger.warning("app.redis_unavailable", error=str(exc))
    app.state.redis = redis

    # 4. Wire services
    from secureshift.container import build_container

    app.state.container = build_container(settings, get_session_factory(), redis=redis)
    _start_recovery(app.state.container)

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await app.state.container.recovery.stop()
    await app.state.container.side_effects.drain()
    if redis is not None:
        await redis.aclose()
    await close_db()
    logger.info("app.stopped")


def _start_recovery(container: WorkflowContainer) -> None:
    if container.settings.recovery_interval_seconds > 0:
        container.recovery.start()


def create_app(container: WorkflowContainer | None = None) -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="SecureShift Workflow",
        description=(
            "Job lifecycle orchestration for security-guard staffing: "
            "posting, applications, execution, ratings and payment release."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.container = container

    # --- Middleware ---
    from secureshift.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from secureshift.api.routes.health import router as health_router
    from secureshift.api.routes.workflow import router as workflow_router

    app.include_router(health_router)
    app.include_router(workflow_router)

    return app


# The app instance used by Uvicorn
app = create_app()
