"""Scan job creation."""

from sqlalchemy.ext.asyncio import AsyncSession

from scmsync.models.enums import JobStatus
from scmsync.models.scan import ScanRequest
from scmsync.repositories.scan_job_repo import ScanJobRepository
from scmsync.services.id_generator import SCAN_PREFIX, generate_id


async def enqueue_scan_job(session: AsyncSession, request: ScanRequest) -> str:
    """Create a queued job record for a scan and return its id.

    Only the repository identity is stored; credentials stay in memory.
    """
    job_id = generate_id(SCAN_PREFIX)
    repo = ScanJobRepository(session)
    await repo.create(
        job_id=job_id,
        scope_id=request.scope_id,
        status=JobStatus.QUEUED,
        tool_type=request.tool_type,
        repository_url=request.repository_url,
        repository_name=request.repository_name,
        result=None,
        errors=None,
    )
    await session.commit()
    return job_id
