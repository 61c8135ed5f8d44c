"""Normalized SCM records, the canonical intermediates between platform APIs and the store.

Platform fetch strategies convert REST payloads INTO these models; the
persistence engine merges them INTO the relational rows. Fields left as
``None`` (or empty collections) mean "unknown" and never overwrite stored data.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from scmsync.models.enums import FileChangeType, MergeRequestState


class FileChange(BaseModel):
    """Per-file diff statistics for a commit or merge request."""

    model_config = ConfigDict(extra="forbid")

    path: str
    previous_path: str | None = None
    change_type: FileChangeType = FileChangeType.MODIFIED
    added_lines: int = 0
    removed_lines: int = 0
    changed_lines: int = 0
    is_binary: bool = False


class RepositoryRecord(BaseModel):
    """A repository visible to the scan credential."""

    model_config = ConfigDict(extra="forbid")

    scope_id: str | None = None
    full_name: str
    name: str
    url: str | None = None
    default_branch: str | None = None
    is_private: bool | None = None
    last_activity_at: datetime | None = None
    platform_data: dict = Field(default_factory=dict)


class CommitRecord(BaseModel):
    """A commit, keyed by (scope_id, sha)."""

    model_config = ConfigDict(extra="forbid")

    scope_id: str | None = None
    sha: str
    repository_name: str | None = None
    repo_slug: str | None = None
    branch_names: list[str] = Field(default_factory=list)
    message: str | None = None

    author_username: str | None = None
    author_name: str | None = None
    author_email: str | None = None
    committer_username: str | None = None
    committer_name: str | None = None
    committer_email: str | None = None
    authored_at: datetime | None = None
    committed_at: datetime | None = None

    added_lines: int | None = None
    removed_lines: int | None = None
    changed_lines: int | None = None
    files_changed: int | None = None
    file_changes: list[FileChange] = Field(default_factory=list)

    parent_shas: list[str] = Field(default_factory=list)
    is_merge_commit: bool | None = None
    commit_url: str | None = None
    platform_data: dict = Field(default_factory=dict)

    # Populated by user resolution
    author_user_id: str | None = None
    committer_user_id: str | None = None

    @property
    def timestamp(self) -> datetime | None:
        return self.committed_at or self.authored_at


class MergeRequestRecord(BaseModel):
    """A merge/pull request, keyed by (scope_id, external_id)."""

    model_config = ConfigDict(extra="forbid")

    scope_id: str | None = None
    external_id: str
    repository_name: str | None = None
    repo_slug: str | None = None
    title: str | None = None
    description: str | None = None
    state: MergeRequestState | None = None
    source_branch: str | None = None
    target_branch: str | None = None

    author_username: str | None = None
    author_name: str | None = None
    author_email: str | None = None
    reviewers: list[str] = Field(default_factory=list)
    is_draft: bool | None = None

    added_lines: int | None = None
    removed_lines: int | None = None
    lines_changed: int | None = None
    files_changed: int | None = None
    commit_count: int | None = None
    comment_count: int | None = None

    created_on: datetime | None = None
    updated_on: datetime | None = None
    merged_at: datetime | None = None
    closed_at: datetime | None = None
    picked_for_review_at: datetime | None = None
    review_pickup_ms: int | None = None

    merge_commit_sha: str | None = None
    url: str | None = None
    labels: list[str] = Field(default_factory=list)
    platform_data: dict = Field(default_factory=dict)

    # Populated by user resolution
    author_user_id: str | None = None
    reviewer_user_ids: list[str] = Field(default_factory=list)

    @property
    def activity_at(self) -> datetime | None:
        return self.updated_on or self.created_on
