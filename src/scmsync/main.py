"""FastAPI application factory and lifespan management."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from scmsync.config import settings
from scmsync.logging_config import configure_logging

# Configure logging at import time
configure_logging(log_level=settings.log_level, json_output=not settings.local_mode)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown resources."""
    from scmsync.db.engine import create_db_engine, create_schema, create_session_factory
    from scmsync.ratelimit.coordinator import RateLimitCoordinator
    from scmsync.scanning.connections import ConnectionRegistry
    from scmsync.scanning.service import GitScannerService

    db_url = settings.effective_database_url
    engine = create_db_engine(db_url)

    # No migrations: create_all only adds missing tables
    await create_schema(engine)

    session_factory = create_session_factory(engine)
    app.state.db_engine = engine
    app.state.db_session_factory = session_factory
    app.state.scanner_service = GitScannerService(
        session_factory, settings, coordinator=RateLimitCoordinator(settings),
    )
    app.state.connection_registry = (
        ConnectionRegistry.load(settings.connections_file) if settings.connections_file else None
    )

    scheduler_task = None
    if settings.scheduler_enabled and app.state.connection_registry is not None:
        from scmsync.workers.scheduler import run_scheduler
        scheduler_task = asyncio.create_task(run_scheduler(app))

    logger.info("scmsync API started (db=%s)", "sqlite" if "sqlite" in db_url else "postgresql")
    yield

    # Shutdown
    if scheduler_task is not None:
        scheduler_task.cancel()
        await asyncio.gather(scheduler_task, return_exceptions=True)
    await app.state.scanner_service.shutdown()
    await engine.dispose()
    logger.info("scmsync API shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="scmsync API",
        version="0.1.0",
        description="Incremental scan-and-merge of SCM activity from GitHub, GitLab, Bitbucket and Azure Repos.",
        lifespan=lifespan,
    )

    from scmsync.api.middleware.trace_id import TraceIdMiddleware
    app.add_middleware(TraceIdMiddleware)

    from scmsync.errors.handlers import register_exception_handlers
    register_exception_handlers(app)

    from scmsync.api.router import api_router
    app.include_router(api_router)

    return app


app = create_app()
