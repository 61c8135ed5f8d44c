"""Batch scanning over the connection registry."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from scmsync.config import Settings, settings as default_settings
from scmsync.errors.exceptions import ScmSyncError
from scmsync.models.scan import BatchScanSummary, ScanRequest, ScanResult
from scmsync.scanning.command import failure_result
from scmsync.scanning.connections import ConnectionRegistry, ToolConnection
from scmsync.scanning.service import GitScannerService
from scmsync.services.timeutil import utcnow

logger = logging.getLogger(__name__)

_CREDENTIAL_ERRORS = {"PLATFORM_AUTHENTICATION_ERROR", "CONFIGURATION_ERROR"}


class ScanBatchExecutor:
    """Runs one scan per enabled connection, bounded by ``max_concurrent_scans``.

    A failing connection yields a failed ScanResult and never stops its
    siblings.
    """

    def __init__(self, service: GitScannerService, settings: Settings | None = None):
        self.service = service
        self.settings = settings or default_settings

    async def run(
        self,
        connections: ConnectionRegistry | Iterable[ToolConnection],
        project_id: str | None = None,
    ) -> BatchScanSummary:
        if isinstance(connections, ConnectionRegistry):
            targets = connections.get_enabled(project_id)
        else:
            targets = [
                c for c in connections
                if c.enabled and (project_id is None or c.project_id == project_id)
            ]

        started = utcnow()
        semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent_scans))
        logger.info(
            "Starting batch scan of %d connections (concurrency=%d)",
            len(targets), self.settings.max_concurrent_scans,
        )

        async def _scan(connection: ToolConnection) -> ScanResult:
            async with semaphore:
                return await self._scan_connection(connection)

        results = list(await asyncio.gather(*(_scan(c) for c in targets)))
        succeeded = sum(1 for r in results if r.success)
        summary = BatchScanSummary(
            started_at=started,
            finished_at=utcnow(),
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=results,
        )
        logger.info("Batch scan finished: %d succeeded, %d failed", summary.succeeded, summary.failed)
        return summary

    async def _scan_connection(self, connection: ToolConnection) -> ScanResult:
        started = utcnow()
        try:
            request = connection.to_scan_request()
        except ScmSyncError as exc:
            logger.warning("Connection %s is broken: %s", connection.connection_id, exc.message)
            return failure_result(_placeholder_request(connection), exc, started)

        try:
            result = await self.service.scan_repository(request)
        except Exception as exc:
            logger.exception("Scan of connection %s crashed", connection.connection_id)
            return failure_result(request, exc, started)

        if not result.success and result.error_code in _CREDENTIAL_ERRORS:
            logger.warning(
                "Connection %s is broken (%s): %s",
                connection.connection_id, result.error_code, result.error_message,
            )
        return result


def _placeholder_request(connection: ToolConnection) -> ScanRequest:
    """Credential-less request used only to describe a connection that could not be scanned."""
    return ScanRequest(
        scope_id=connection.scope_id,
        repository_url=connection.repository_url,
        repository_name=connection.repository_name,
        tool_type=connection.tool_type,
        connection_id=connection.connection_id,
        project_id=connection.project_id,
    )
