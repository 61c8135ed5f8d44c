"""Background scheduler for periodic connection scans."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from scmsync.repositories.trace_log_repo import ScanTraceLogRepository
from scmsync.scanning.batch import ScanBatchExecutor
from scmsync.scanning.connections import ConnectionRegistry, ToolConnection
from scmsync.services.timeutil import ensure_utc

logger = logging.getLogger(__name__)


async def due_connections(
    session_factory,
    registry: ConnectionRegistry,
    interval: timedelta,
    now: datetime | None = None,
) -> list[ToolConnection]:
    """Enabled connections whose last scan attempt is older than ``interval``."""
    now = now or datetime.now(timezone.utc)
    due: list[ToolConnection] = []
    async with session_factory() as session:
        repo = ScanTraceLogRepository(session)
        for connection in registry.get_enabled():
            trace = await repo.get(connection.scope_id)
            if trace is None or trace.last_attempt_at is None:
                due.append(connection)
            elif now >= ensure_utc(trace.last_attempt_at) + interval:
                due.append(connection)
    return due


async def run_scheduled_scans(app) -> int:
    """Scan every overdue connection once. Returns the number scanned."""
    registry: ConnectionRegistry | None = getattr(app.state, "connection_registry", None)
    if registry is None:
        return 0

    settings = app.state.scanner_service.settings
    due = await due_connections(
        app.state.db_session_factory,
        registry,
        timedelta(minutes=settings.scan_interval_minutes),
    )
    if not due:
        return 0

    summary = await ScanBatchExecutor(app.state.scanner_service, settings).run(due)
    logger.info("Batch of %d scheduled scans finished (%d failed)", summary.total, summary.failed)
    return summary.total


async def run_scheduler(app) -> None:
    """Background task that periodically scans overdue connections."""
    poll_seconds = app.state.scanner_service.settings.scheduler_poll_seconds
    logger.info("Scan scheduler started (poll_interval=%ds)", poll_seconds)

    while True:
        try:
            await asyncio.sleep(poll_seconds)

            count = await run_scheduled_scans(app)
            if count:
                logger.info("Scheduler scanned %d connections", count)

        except asyncio.CancelledError:
            logger.info("Scan scheduler stopped")
            break
        except Exception as exc:
            logger.exception("Scheduler error: %s", exc)
