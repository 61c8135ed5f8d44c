"""Worker for asynchronous repository scans."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scmsync.models.scan import ScanRequest
from scmsync.scanning.command import ScanCommand, ScanCommandExecutor
from scmsync.workers.base import BaseWorker, error_detail

logger = logging.getLogger(__name__)


class ScanWorker(BaseWorker):
    """Runs a scan command and records its ScanResult on the job row."""

    def __init__(self, executor: ScanCommandExecutor, session_factory: async_sessionmaker[AsyncSession]):
        super().__init__(session_factory)
        self.executor = executor

    async def process(self, job_id: str, payload: ScanRequest) -> dict:
        result = await self.executor.execute(ScanCommand(request=payload, scan_id=job_id))
        outcome: dict = {"result": result.model_dump(mode="json")}
        if not result.success:
            outcome["errors"] = [
                error_detail(result.error_code or "SCAN_FAILED", result.error_message or "Scan failed", job_id)
            ]
        return outcome
