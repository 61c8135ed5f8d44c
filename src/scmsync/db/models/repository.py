"""Discovered repository table."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from scmsync.db.base import Base, TimestampMixin, UtcDateTime


class ScmRepositoryRow(Base, TimestampMixin):
    __tablename__ = "scm_repositories"
    __table_args__ = (
        UniqueConstraint("scope_id", "full_name", name="uq_scm_repositories_scope_full_name"),
    )

    repository_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    scope_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(512), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    default_branch: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_private: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    platform_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
