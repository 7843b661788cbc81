"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from lumina.api.errors import register_error_handlers
from lumina.api.routes import auth, credits, generations
from lumina.core import timezone  # noqa: F401
from lumina.core.config import Settings, configure_logging
from lumina.core.database import setup_db_session
from lumina.services.auth import AuthService
from lumina.services.generation import GenerationService
from lumina.services.identity import IdentityClient
from lumina.services.image_generation.replicate_client import ReplicateGateway
from lumina.services.rate_limiter import RateLimiter
from lumina.services.storage.asset_storage import AssetStorage
from lumina.uow import create_uow_factory
from lumina.workers.generation_poller import GenerationPoller, recover_orphaned_jobs
from lumina.workers.rate_limit_sweeper import run_rate_limit_sweeper

logger = structlog.get_logger()


def create_resilient_worker(
    coro_func: Callable[[], Awaitable[None]], worker_name: str, shutdown_event: asyncio.Event
):
    """Create a worker with automatic restart on failure.

    Args:
        coro_func: Zero-argument coroutine function running the worker loop
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """
    RESTART_DELAY = 1  # Fixed 1 second delay between restarts

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            # Worker loops run forever, returning is unexpected
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_func())
            new_task.add_done_callback(on_worker_done)

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_func())
    task.add_done_callback(on_worker_done)
    return task


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: configure logging, database, provider/storage/identity clients,
      poller, login rate limiter and its sweeper, orphaned job recovery
    - Shutdown: stop poll tasks and workers, dispose the connection pool
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    gateway = ReplicateGateway(
        api_token=settings.replicate_api_token,
        model=settings.replicate_model,
        output_format=settings.output_format,
        output_quality=settings.output_quality,
    )
    storage = AssetStorage(
        base_url=settings.supabase_url,
        service_key=settings.supabase_service_key,
        bucket=settings.storage_bucket,
        folder_prefix=settings.storage_folder_prefix,
    )
    identity_client = IdentityClient(
        base_url=settings.supabase_url,
        anon_key=settings.supabase_anon_key or settings.supabase_service_key,
    )
    rate_limiter = RateLimiter(
        max_attempts=settings.rate_limit_max_attempts,
        window_seconds=settings.rate_limit_window_seconds,
        block_seconds=settings.rate_limit_block_seconds,
    )
    poller = GenerationPoller(uow_factory, gateway, storage, settings)

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.rate_limiter = rate_limiter
    app.state.poller = poller
    app.state.identity_client = identity_client
    app.state.auth_service = AuthService(identity_client, rate_limiter)
    app.state.generation_service = GenerationService(
        uow_factory, gateway, poller, settings, storage=storage
    )

    # Resume jobs left behind by a previous process before accepting new ones
    try:
        resumed, failed = await recover_orphaned_jobs(uow_factory, poller, settings)
        logger.info("startup.recovery_completed", resumed=resumed, failed=failed)
    except Exception as e:
        # Startup continues; stale jobs can be expired with the CLI
        logger.error(
            "startup.recovery_failed",
            error=str(e),
            error_type=type(e).__name__,
        )

    shutdown_event = asyncio.Event()

    sweeper_task = create_resilient_worker(
        lambda: run_rate_limit_sweeper(
            rate_limiter, settings.rate_limit_cleanup_interval_seconds
        ),
        "rate_limit_sweeper",
        shutdown_event,
    )

    logger.info("application.startup", db_url=settings.database_url.split("@")[-1])

    yield

    logger.info("application.shutdown", active_polls=len(poller))
    shutdown_event.set()

    sweeper_task.cancel()
    await asyncio.gather(sweeper_task, return_exceptions=True)
    await poller.shutdown()

    engine = session_factory.kw.get("bind")
    if engine is not None:
        await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Lumina Backend API",
        description="Credits-metered AI image generation",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Routers carry their own /api/... prefix
    app.include_router(auth.router)
    app.include_router(credits.router)
    app.include_router(generations.router)

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy", "active_polls": len(app.state.poller)}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
