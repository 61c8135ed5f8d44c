"""Scan request/result models and job status."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from scmsync.models.common import ErrorDetail
from scmsync.models.enums import JobStatus, ScanState


class Credential(BaseModel):
    """Usable platform credential. Secrets are excluded from repr."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    token: str | None = Field(None, repr=False)
    username: str | None = None
    password: str | None = Field(None, repr=False)

    @property
    def secret(self) -> str | None:
        """Token first, then password."""
        return self.token or self.password


class ScanRequest(BaseModel):
    """Immutable input of a single repository scan."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    scope_id: str = Field(..., min_length=1, max_length=128)
    repository_url: str | None = None
    repository_name: str | None = None
    branch: str | None = None
    tool_type: str
    credential: Credential = Field(default_factory=Credential)
    since: datetime | None = None
    until: datetime | None = None
    last_scan_from: int | None = None  # epoch millis of the caller's last successful scan
    clone_enabled: bool = False
    fetch_repositories: bool = False
    connection_id: str | None = None
    project_id: str | None = None


class ScanResult(BaseModel):
    """Outcome of a scan. Produced for failures too; scans never raise."""

    model_config = ConfigDict(extra="forbid")

    scan_id: str
    scope_id: str
    repository_url: str | None = None
    repository_name: str | None = None
    platform: str | None = None
    success: bool
    state: ScanState
    repositories_found: int = 0
    commits_found: int = 0
    merge_requests_found: int = 0
    users_found: int = 0
    start_time: datetime
    end_time: datetime
    duration_ms: int
    truncated: bool = False
    error_code: str | None = None
    error_message: str | None = None


class ScanJobStatus(BaseModel):
    """Polling view of an asynchronous scan."""

    model_config = ConfigDict(extra="forbid")

    job_id: str = Field(..., pattern=r"^scan_[A-Za-z0-9_-]+$")
    status: JobStatus
    scope_id: str
    repository_url: str | None = None
    repository_name: str | None = None
    tool_type: str
    created_at: datetime
    updated_at: datetime
    result: ScanResult | None = None
    errors: list[ErrorDetail] | None = None


class BatchScanSummary(BaseModel):
    """Aggregate outcome of a batch run over many connections."""

    model_config = ConfigDict(extra="forbid")

    started_at: datetime
    finished_at: datetime
    total: int
    succeeded: int
    failed: int
    results: list[ScanResult] = Field(default_factory=list)
