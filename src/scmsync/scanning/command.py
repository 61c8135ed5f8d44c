"""Scan command executor: the per-repository scan state machine.

RECEIVED -> REPOSITORIES_FETCHED -> COMMITS_FETCHED -> MERGE_REQUESTS_FETCHED
-> USERS_RESOLVED -> PERSISTED -> COMPLETED, with FAILED reachable from every
state. Failures become a ``ScanResult`` with ``success=False``; nothing but
cancellation escapes :meth:`ScanCommandExecutor.execute`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scmsync.config import Settings, settings as default_settings
from scmsync.errors.exceptions import ScmSyncError
from scmsync.logging_config import bind_scan_context, clear_scan_context
from scmsync.models.enums import ScanState
from scmsync.models.scan import ScanRequest, ScanResult
from scmsync.repositories.trace_log_repo import ScanTraceLogRepository
from scmsync.scanning.fetchers import CommitFetcher, MergeRequestFetcher, RepositoryFetcher
from scmsync.scanning.selector import StrategySelector
from scmsync.services.id_generator import SCAN_PREFIX, generate_id
from scmsync.services.persistence import PersistenceService
from scmsync.services.timeutil import utcnow
from scmsync.services.user_resolution import UserResolver

logger = logging.getLogger(__name__)


@dataclass
class ScanCommand:
    request: ScanRequest
    scan_id: str = field(default_factory=lambda: generate_id(SCAN_PREFIX))


def failure_result(
    request: ScanRequest,
    error: Exception,
    started: datetime,
    *,
    scan_id: str | None = None,
) -> ScanResult:
    """ScanResult for a scan that failed before or outside the executor."""
    ended = utcnow()
    return ScanResult(
        scan_id=scan_id or generate_id(SCAN_PREFIX),
        scope_id=request.scope_id,
        repository_url=request.repository_url,
        repository_name=request.repository_name,
        success=False,
        state=ScanState.FAILED,
        start_time=started,
        end_time=ended,
        duration_ms=int((ended - started).total_seconds() * 1000),
        error_code=getattr(error, "code", "INTERNAL_ERROR"),
        error_message=getattr(error, "message", None) or str(error) or type(error).__name__,
    )


class ScanCommandExecutor:
    """Runs one scan end to end and records the attempt in the trace log."""

    def __init__(
        self,
        selector: StrategySelector,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ):
        self.settings = settings or default_settings
        self.session_factory = session_factory
        self.repository_fetcher = RepositoryFetcher(selector, session_factory, self.settings)
        self.commit_fetcher = CommitFetcher(selector, session_factory, self.settings)
        self.merge_request_fetcher = MergeRequestFetcher(selector, session_factory, self.settings)
        self.persistence = PersistenceService(session_factory)
        self.user_resolver = UserResolver(self.persistence, self.settings)

    async def execute(self, command: ScanCommand) -> ScanResult:
        request = command.request
        started = utcnow()
        state = ScanState.RECEIVED
        platform = None
        repository_name = request.repository_name
        repositories_found = commits_found = merge_requests_found = users_found = 0
        error_code = error_message = None
        truncated: set[str] = set()

        bind_scan_context(command.scan_id, request.scope_id, request.tool_type)
        logger.info("Scan %s received for %s", command.scan_id, request.repository_url or request.repository_name)
        try:
            scope = await self.commit_fetcher.prepare(request)
            platform = str(scope.strategy.platform)
            repository_name = repository_name or scope.repo.full_name

            if request.fetch_repositories:
                repositories = await self.repository_fetcher.fetch_repositories(request, scope)
                await self.persistence.save_repositories(repositories)
                repositories_found = len(repositories)
            state = ScanState.REPOSITORIES_FETCHED

            commits = await self.commit_fetcher.fetch_commits(request, scope)
            commits_found = len(commits)
            state = ScanState.COMMITS_FETCHED

            merge_requests = await self.merge_request_fetcher.fetch_merge_requests(request, scope)
            merge_requests_found = len(merge_requests)
            state = ScanState.MERGE_REQUESTS_FETCHED
            truncated = scope.truncated

            directory = await self.user_resolver.resolve(
                request.scope_id, commits, merge_requests, repository_name,
            )
            users_found = len(directory.user_ids)
            state = ScanState.USERS_RESOLVED

            await self.persistence.save_commits(commits)
            await self.persistence.save_merge_requests(merge_requests)
            state = ScanState.PERSISTED

            state = ScanState.COMPLETED
        except ScmSyncError as exc:
            error_code, error_message = exc.code, exc.message
            logger.error("Scan %s failed after %s: %s", command.scan_id, state, exc.message)
            state = ScanState.FAILED
        except Exception as exc:
            error_code, error_message = "INTERNAL_ERROR", str(exc) or type(exc).__name__
            logger.exception("Scan %s failed unexpectedly after %s", command.scan_id, state)
            state = ScanState.FAILED

        success = state == ScanState.COMPLETED
        ended = utcnow()
        await self._record_trace(request, started, success, error_message, repository_name, not truncated)

        result = ScanResult(
            scan_id=command.scan_id,
            scope_id=request.scope_id,
            repository_url=request.repository_url,
            repository_name=repository_name,
            platform=platform,
            success=success,
            state=state,
            repositories_found=repositories_found,
            commits_found=commits_found,
            merge_requests_found=merge_requests_found,
            users_found=users_found,
            start_time=started,
            end_time=ended,
            duration_ms=int((ended - started).total_seconds() * 1000),
            truncated=bool(truncated),
            error_code=error_code,
            error_message=error_message,
        )
        logger.info(
            "Scan %s %s in %dms: %d commits, %d merge requests, %d users",
            command.scan_id, "completed" if success else "failed", result.duration_ms,
            commits_found, merge_requests_found, users_found,
        )
        clear_scan_context()
        return result

    async def _record_trace(
        self,
        request: ScanRequest,
        started: datetime,
        success: bool,
        error_message: str | None,
        repository_name: str | None,
        advance_watermark: bool = True,
    ) -> None:
        """Write the attempt to the trace log; the watermark is the scan start time.

        A truncated scan leaves the watermark where it was so the records it
        never reached are fetched next time.
        """
        if success and not advance_watermark:
            logger.warning("Scan of %s was truncated; keeping the previous watermark", request.scope_id)
        try:
            async with self.session_factory() as session:
                await ScanTraceLogRepository(session).record_attempt(
                    request.scope_id,
                    started_at=started,
                    success=success,
                    error=error_message,
                    connection_id=request.connection_id,
                    project_id=request.project_id,
                    repository_name=repository_name,
                    advance_watermark=advance_watermark,
                )
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to write trace log for scope %s", request.scope_id)
