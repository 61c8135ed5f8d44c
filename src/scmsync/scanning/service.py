"""Scanner service: synchronous scans and fire-and-forget scan jobs."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scmsync.config import Settings, settings as default_settings
from scmsync.errors.exceptions import NotFoundError
from scmsync.models.common import ErrorDetail
from scmsync.models.enums import JobStatus
from scmsync.models.scan import ScanJobStatus, ScanRequest, ScanResult
from scmsync.ratelimit.coordinator import RateLimitCoordinator
from scmsync.repositories.scan_job_repo import ScanJobRepository
from scmsync.scanning.command import ScanCommand, ScanCommandExecutor
from scmsync.scanning.selector import StrategySelector
from scmsync.workers.queue import enqueue_scan_job
from scmsync.workers.scan_worker import ScanWorker

logger = logging.getLogger(__name__)


class GitScannerService:
    """Entry point for scans.

    One service owns one strategy selector (and therefore one rate limit
    coordinator), so every scan started through it shares the platform
    budgets.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        *,
        selector: StrategySelector | None = None,
        coordinator: RateLimitCoordinator | None = None,
    ):
        self.settings = settings or default_settings
        self.session_factory = session_factory
        self.selector = selector or StrategySelector(self.settings, coordinator)
        self.executor = ScanCommandExecutor(self.selector, session_factory, self.settings)
        self.worker = ScanWorker(self.executor, session_factory)
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def coordinator(self) -> RateLimitCoordinator:
        return self.selector.coordinator

    async def scan_repository(self, request: ScanRequest) -> ScanResult:
        """Run one scan and return its result. Scan failures are reported, not raised."""
        return await self.executor.execute(ScanCommand(request=request))

    async def submit_scan(self, request: ScanRequest) -> str:
        """Record a queued job, start the scan in the background and return the job id."""
        async with self.session_factory() as session:
            job_id = await enqueue_scan_job(session, request)

        task = asyncio.create_task(self.worker.execute(job_id, request), name=job_id)
        self._tasks[job_id] = task
        task.add_done_callback(self._task_done)
        logger.info("Submitted scan job %s for scope %s", job_id, request.scope_id)
        return job_id

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.pop(task.get_name(), None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # The worker already recorded the failure on the job row.
            logger.error("Scan job %s crashed: %s", task.get_name(), exc)

    async def get_job(self, job_id: str) -> ScanJobStatus:
        """Current status of a scan job.

        Raises:
            NotFoundError: unknown job id.
        """
        async with self.session_factory() as session:
            row = await ScanJobRepository(session).get(job_id)
            if row is None:
                raise NotFoundError("Scan job", job_id)
            return ScanJobStatus(
                job_id=row.job_id,
                status=JobStatus(row.status),
                scope_id=row.scope_id,
                repository_url=row.repository_url,
                repository_name=row.repository_name,
                tool_type=row.tool_type,
                created_at=row.created_at,
                updated_at=row.updated_at,
                result=ScanResult.model_validate(row.result) if row.result else None,
                errors=[ErrorDetail.model_validate(e) for e in row.errors] if row.errors else None,
            )

    async def wait_for(self, job_id: str, timeout: float | None = None) -> ScanJobStatus:
        """Wait until a job finishes and return its final status.

        Jobs started by another process are not awaitable here; their
        current status is returned as is.
        """
        task = self._tasks.get(job_id)
        if task is not None:
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                raise TimeoutError(f"Scan job {job_id} still running after {timeout}s")
        return await self.get_job(job_id)

    async def cancel(self, job_id: str) -> bool:
        """Cancel one running scan job. Other scans are unaffected.

        Returns False when the job is not running in this service.
        """
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.wait({task})
        await self.worker.mark_cancelled(job_id)
        logger.info("Cancelled scan job %s", job_id)
        return True

    async def shutdown(self) -> None:
        """Cancel every in-flight scan job."""
        pending = dict(self._tasks)
        tasks = list(pending.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            for job_id in pending:
                await self.worker.mark_cancelled(job_id)
            logger.info("Cancelled %d in-flight scan jobs", len(tasks))
