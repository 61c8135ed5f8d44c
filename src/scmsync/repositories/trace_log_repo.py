"""Per-scope scan trace log: attempt history and the incremental watermark."""

from datetime import datetime

from scmsync.db.models.trace_log import ScanTraceLogRow
from scmsync.models.enums import ScanStatus
from scmsync.repositories.base import BaseRepository


class ScanTraceLogRepository(BaseRepository[ScanTraceLogRow]):
    model = ScanTraceLogRow

    async def record_attempt(
        self,
        scope_id: str,
        *,
        started_at: datetime,
        success: bool,
        error: str | None = None,
        connection_id: str | None = None,
        project_id: str | None = None,
        repository_name: str | None = None,
        advance_watermark: bool = True,
    ) -> ScanTraceLogRow:
        """Upsert the trace row; the watermark only moves on a complete success."""
        row = await self.get(scope_id)
        if row is None:
            row = await self.create(scope_id=scope_id)

        row.last_attempt_at = started_at
        row.last_status = ScanStatus.SUCCESS if success else ScanStatus.FAILURE
        row.last_error = None if success else error
        if success and advance_watermark:
            row.last_success_at = started_at
        if connection_id:
            row.connection_id = connection_id
        if project_id:
            row.project_id = project_id
        if repository_name:
            row.repository_name = repository_name
        await self.session.flush()
        return row
