"""Scan trace log table: one row per scope, the incremental watermark."""

from datetime import datetime

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from scmsync.db.base import Base, TimestampMixin, UtcDateTime


class ScanTraceLogRow(Base, TimestampMixin):
    __tablename__ = "scan_trace_logs"

    scope_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    connection_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    project_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    repository_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    last_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
