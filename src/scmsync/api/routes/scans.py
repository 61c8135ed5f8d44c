"""Scan trigger and job polling endpoints."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from scmsync.dependencies import get_connection_registry, get_scanner_service
from scmsync.models.scan import ScanRequest
from scmsync.scanning.batch import ScanBatchExecutor
from scmsync.scanning.connections import ConnectionRegistry
from scmsync.scanning.service import GitScannerService

router = APIRouter(prefix="/scans", tags=["Scans"])


class BatchScanRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    project_id: str | None = None


@router.post("")
async def scan_repository(
    body: ScanRequest,
    service: GitScannerService = Depends(get_scanner_service),
) -> dict:
    """Run a scan and return its ScanResult. Scan failures come back as success=false."""
    result = await service.scan_repository(body)
    return result.model_dump(mode="json")


@router.post("/async", status_code=202)
async def submit_scan(
    body: ScanRequest,
    service: GitScannerService = Depends(get_scanner_service),
) -> dict:
    job_id = await service.submit_scan(body)
    job = await service.get_job(job_id)
    return job.model_dump(mode="json", exclude_none=True)


@router.post("/batch")
async def scan_batch(
    body: BatchScanRequest | None = None,
    service: GitScannerService = Depends(get_scanner_service),
    registry: ConnectionRegistry = Depends(get_connection_registry),
) -> dict:
    """Scan every enabled registry connection, optionally for one project."""
    executor = ScanBatchExecutor(service, service.settings)
    summary = await executor.run(registry, project_id=body.project_id if body else None)
    return summary.model_dump(mode="json")


@router.get("/jobs/{job_id}")
async def get_scan_job(
    job_id: str,
    service: GitScannerService = Depends(get_scanner_service),
) -> dict:
    job = await service.get_job(job_id)
    return job.model_dump(mode="json", exclude_none=True)


@router.delete("/jobs/{job_id}")
async def cancel_scan_job(
    job_id: str,
    service: GitScannerService = Depends(get_scanner_service),
) -> dict:
    cancelled = await service.cancel(job_id)
    job = await service.get_job(job_id)
    return {"cancelled": cancelled, "job": job.model_dump(mode="json", exclude_none=True)}
