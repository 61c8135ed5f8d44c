"""Merge request table."""

from datetime import datetime

from sqlalchemy import JSON, BigInteger, Boolean, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from scmsync.db.base import Base, TimestampMixin, UtcDateTime


class MergeRequestRow(Base, TimestampMixin):
    __tablename__ = "merge_requests"
    __table_args__ = (
        UniqueConstraint("scope_id", "external_id", name="uq_merge_requests_scope_external_id"),
    )

    merge_request_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    scope_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)
    repository_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    repo_slug: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source_branch: Mapped[str | None] = mapped_column(String(512), nullable=True)
    target_branch: Mapped[str | None] = mapped_column(String(512), nullable=True)

    author_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    author_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    author_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    reviewers: Mapped[list | None] = mapped_column(JSON, nullable=True)
    is_draft: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    added_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    removed_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lines_changed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    files_changed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    commit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_on: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    updated_on: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True, index=True)
    merged_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    picked_for_review_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    review_pickup_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    merge_commit_sha: Mapped[str | None] = mapped_column(String(64), nullable=True)
    url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    labels: Mapped[list | None] = mapped_column(JSON, nullable=True)
    platform_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    author_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    reviewer_user_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
