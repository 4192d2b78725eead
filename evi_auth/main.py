"""EVI Auth - FastAPI Application Factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from evi_auth.api import auth_router, health_router
from evi_auth.core import engine, settings, setup_logging
from evi_auth.core.logging import get_logger
from evi_auth.middleware import SecurityHeadersMiddleware

# Import all models to ensure they're registered with Base for Alembic
from evi_auth.models import AppSetting, RefreshToken, User  # noqa: F401
from evi_auth.services.brute_force import brute_force_sweep_loop, get_brute_force_guard
from evi_auth.services.signing_key import load_signing_key
from evi_auth.services.token_store import expired_token_purge_loop

logger = get_logger("main")


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    setup_logging(
        level=settings.log_level,
        format_type="structured" if not settings.debug else "dev",
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    # Fail fast: without a signing key no session can ever be issued
    load_signing_key()

    # Check security configuration
    for warning in settings.check_security_configuration():
        logger.warning(f"SECURITY: {warning}")

    tasks: list[asyncio.Task] = []

    sweep_task = asyncio.create_task(
        brute_force_sweep_loop(get_brute_force_guard()), name="brute-force-sweep"
    )
    sweep_task.add_done_callback(task_done_callback)
    tasks.append(sweep_task)

    purge_task = asyncio.create_task(expired_token_purge_loop(), name="expired-token-purge")
    purge_task.add_done_callback(task_done_callback)
    tasks.append(purge_task)

    yield

    # Shutdown
    logger.info("Shutting down...")
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Session and token lifecycle service",
        version=settings.app_version,
        lifespan=lifespan,
        # API docs only in debug mode
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    app.add_middleware(SecurityHeadersMiddleware)

    # CORS middleware - MUST be outermost (added last in Starlette LIFO order).
    # Credentials are allowed so the browser sends the refresh cookie.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            "X-Request-ID",
        ],
    )

    # Prometheus metrics (before routers so /metrics endpoint is registered first)
    if settings.enable_metrics:
        from prometheus_fastapi_instrumentator import Instrumentator

        Instrumentator(
            excluded_handlers=["/health", "/metrics"],
        ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    app.include_router(health_router)
    app.include_router(auth_router)

    return app


# Application instance
app = create_app()
