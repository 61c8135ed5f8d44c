"""Base worker interface for asynchronous scan jobs."""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scmsync.models.enums import JobStatus
from scmsync.repositories.scan_job_repo import ScanJobRepository

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED})


def error_detail(code: str, message: str, trace_id: str) -> dict:
    return {
        "code": code,
        "message": message,
        "trace_id": trace_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class BaseWorker(ABC):
    """Abstract base class for job workers.

    Subclasses implement :meth:`process`; :meth:`execute` owns the job row
    lifecycle so every outcome, including crashes and cancellation, is
    visible to pollers.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @abstractmethod
    async def process(self, job_id: str, payload: Any) -> dict:
        """Process a job.

        Returns:
            Dict with a 'result' dict and an optional 'errors' list. A
            non-empty 'errors' list marks the job failed.
        """
        ...

    async def execute(self, job_id: str, payload: Any) -> dict:
        """Execute the full job lifecycle: running -> process -> succeeded/failed."""
        try:
            await self._update(job_id, status=JobStatus.RUNNING)
            outcome = await self.process(job_id, payload)
        except asyncio.CancelledError:
            logger.warning("Job %s cancelled", job_id)
            await self.mark_cancelled(job_id)
            raise
        except Exception as exc:
            logger.exception("Job %s failed", job_id)
            await self._update(
                job_id,
                status=JobStatus.FAILED,
                errors=[error_detail("WORKER_ERROR", str(exc) or type(exc).__name__, job_id)],
            )
            raise

        errors = outcome.get("errors") or None
        await self._update(
            job_id,
            status=JobStatus.FAILED if errors else JobStatus.SUCCEEDED,
            result=outcome.get("result"),
            errors=errors,
        )
        logger.info("Job %s %s", job_id, "failed" if errors else "succeeded")
        return outcome

    async def _update(self, job_id: str, **fields: Any) -> None:
        async with self.session_factory() as session:
            repo = ScanJobRepository(session)
            job = await repo.get(job_id)
            if job is None:
                logger.warning("Job %s disappeared before update", job_id)
                return
            await repo.update(job, updated_at=datetime.now(timezone.utc), **fields)
            await session.commit()

    async def mark_cancelled(self, job_id: str) -> bool:
        """Write CANCELLED unless the job already reached a terminal status.

        Covers tasks cancelled before :meth:`execute` got to run at all.
        """
        async with self.session_factory() as session:
            repo = ScanJobRepository(session)
            job = await repo.get(job_id)
            if job is None or job.status in TERMINAL_STATUSES:
                return False
            await repo.update(
                job,
                status=JobStatus.CANCELLED,
                errors=[error_detail("JOB_CANCELLED", "Scan was cancelled", job_id)],
                updated_at=datetime.now(timezone.utc),
            )
            await session.commit()
            return True
