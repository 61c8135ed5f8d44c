"""Asynchronous scan job table."""

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from scmsync.db.base import Base, TimestampMixin


class ScanJobRow(Base, TimestampMixin):
    __tablename__ = "scan_jobs"

    job_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    scope_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    tool_type: Mapped[str] = mapped_column(String(50), nullable=False)
    repository_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    repository_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    errors: Mapped[list | None] = mapped_column(JSON, nullable=True)
