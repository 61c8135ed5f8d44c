"""Commit table."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from scmsync.db.base import Base, TimestampMixin, UtcDateTime


class CommitRow(Base, TimestampMixin):
    __tablename__ = "commits"
    __table_args__ = (
        UniqueConstraint("scope_id", "sha", name="uq_commits_scope_sha"),
    )

    commit_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    scope_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    sha: Mapped[str] = mapped_column(String(64), nullable=False)
    repository_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    repo_slug: Mapped[str | None] = mapped_column(String(255), nullable=True)
    branch_names: Mapped[list | None] = mapped_column(JSON, nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    author_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    author_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    author_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    committer_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    committer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    committer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    authored_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    committed_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True, index=True)

    added_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    removed_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    changed_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    files_changed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    file_changes: Mapped[list | None] = mapped_column(JSON, nullable=True)

    parent_shas: Mapped[list | None] = mapped_column(JSON, nullable=True)
    is_merge_commit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    commit_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    platform_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    author_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    committer_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
