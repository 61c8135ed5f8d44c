"""Persistence and merge engine: idempotent upserts keyed by natural keys.

Commits are keyed by (scope_id, sha), merge requests by (scope_id,
external_id), repositories by (scope_id, full_name) and users by (scope_id,
username). Existing rows are merged field by field: an incoming value only
replaces the stored one when it is present (not None, not an empty string,
not an empty collection), so a sparse re-fetch never erases richer data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scmsync.db.models.merge_request import MergeRequestRow
from scmsync.db.models.scm_user import ScmUserRow
from scmsync.errors.exceptions import DataProcessingError
from scmsync.models.enums import MergeRequestState
from scmsync.models.records import CommitRecord, MergeRequestRecord, RepositoryRecord
from scmsync.repositories.commit_repo import CommitRepository
from scmsync.repositories.merge_request_repo import MergeRequestRepository
from scmsync.repositories.scm_repository_repo import ScmRepositoryRepository
from scmsync.repositories.user_repo import ScmUserRepository
from scmsync.services.id_generator import (
    COMMIT_PREFIX,
    MERGE_REQUEST_PREFIX,
    REPOSITORY_PREFIX,
    USER_PREFIX,
    generate_id,
)
from scmsync.services.timeutil import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def has_value(value: Any) -> bool:
    """True when a value should overwrite stored data."""
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def _same(stored: Any, incoming: Any) -> bool:
    # SQLite hands back naive datetimes for timezone-aware columns
    if isinstance(stored, datetime) and isinstance(incoming, datetime):
        return ensure_utc(stored) == ensure_utc(incoming)
    return stored == incoming


def merge_fields(row: Any, values: dict[str, Any]) -> bool:
    """Copy present values onto a row. Returns True if anything changed."""
    changed = False
    for field, value in values.items():
        if not has_value(value):
            continue
        if not _same(getattr(row, field), value):
            setattr(row, field, value)
            changed = True
    return changed


def apply_state_flags(row: MergeRequestRow) -> None:
    """Derive is_open/is_closed from state; MERGED implies closed with a merge time."""
    if row.state == MergeRequestState.MERGED:
        row.is_open = False
        row.is_closed = True
        if row.merged_at is None:
            row.merged_at = row.closed_at or row.updated_on or utcnow()
    elif row.state == MergeRequestState.CLOSED:
        row.is_open = False
        row.is_closed = True
    elif row.state == MergeRequestState.OPEN:
        row.is_open = True
        row.is_closed = False


def _commit_values(record: CommitRecord) -> dict[str, Any]:
    values = record.model_dump(exclude={"scope_id", "sha", "file_changes"})
    values["file_changes"] = [fc.model_dump(mode="json") for fc in record.file_changes]
    return values


def _merge_request_values(record: MergeRequestRecord) -> dict[str, Any]:
    values = record.model_dump(exclude={"scope_id", "external_id", "state"})
    values["state"] = record.state.value if record.state else None
    return values


def _require_scope(record: Any) -> str:
    if not record.scope_id:
        raise DataProcessingError(f"{type(record).__name__} has no scope id")
    return record.scope_id


@dataclass
class SaveSummary:
    """Counts from one save batch."""

    created: int = 0
    updated: int = 0
    unchanged: int = 0

    @property
    def total(self) -> int:
        return self.created + self.updated + self.unchanged


class PersistenceService:
    """Upserts normalized records; each call runs in its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    async def save_commits(self, commits: list[CommitRecord]) -> SaveSummary:
        summary = SaveSummary()
        if not commits:
            return summary
        try:
            async with self.session_factory() as session:
                repo = CommitRepository(session)
                for record in commits:
                    scope_id = _require_scope(record)
                    values = _commit_values(record)
                    row = await repo.get_by_sha(scope_id, record.sha)
                    if row is None:
                        await repo.create(
                            commit_id=generate_id(COMMIT_PREFIX),
                            scope_id=scope_id,
                            sha=record.sha,
                            **{k: v for k, v in values.items() if has_value(v)},
                        )
                        summary.created += 1
                    elif merge_fields(row, values):
                        summary.updated += 1
                    else:
                        summary.unchanged += 1
                await session.commit()
        except SQLAlchemyError as exc:
            raise DataProcessingError(f"Failed to save commits: {exc}") from exc
        logger.info(
            "Saved commits: %d created, %d updated, %d unchanged",
            summary.created, summary.updated, summary.unchanged,
        )
        return summary

    # ------------------------------------------------------------------
    # Merge requests
    # ------------------------------------------------------------------

    async def save_merge_requests(self, merge_requests: list[MergeRequestRecord]) -> SaveSummary:
        summary = SaveSummary()
        if not merge_requests:
            return summary
        try:
            async with self.session_factory() as session:
                repo = MergeRequestRepository(session)
                for record in merge_requests:
                    scope_id = _require_scope(record)
                    values = _merge_request_values(record)
                    row = await repo.get_by_external_id(scope_id, record.external_id)
                    if row is None:
                        row = MergeRequestRow(
                            merge_request_id=generate_id(MERGE_REQUEST_PREFIX),
                            scope_id=scope_id,
                            external_id=record.external_id,
                            **{k: v for k, v in values.items() if has_value(v)},
                        )
                        apply_state_flags(row)
                        session.add(row)
                        await session.flush()
                        summary.created += 1
                        continue
                    changed = merge_fields(row, values)
                    was = (row.is_open, row.is_closed, row.merged_at)
                    apply_state_flags(row)
                    if changed or was != (row.is_open, row.is_closed, row.merged_at):
                        summary.updated += 1
                    else:
                        summary.unchanged += 1
                await session.commit()
        except SQLAlchemyError as exc:
            raise DataProcessingError(f"Failed to save merge requests: {exc}") from exc
        logger.info(
            "Saved merge requests: %d created, %d updated, %d unchanged",
            summary.created, summary.updated, summary.unchanged,
        )
        return summary

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    async def save_repositories(self, repositories: list[RepositoryRecord]) -> SaveSummary:
        summary = SaveSummary()
        if not repositories:
            return summary
        try:
            async with self.session_factory() as session:
                repo = ScmRepositoryRepository(session)
                for record in repositories:
                    scope_id = _require_scope(record)
                    values = record.model_dump(exclude={"scope_id", "full_name"})
                    row = await repo.get_by_full_name(scope_id, record.full_name)
                    if row is None:
                        await repo.create(
                            repository_id=generate_id(REPOSITORY_PREFIX),
                            scope_id=scope_id,
                            full_name=record.full_name,
                            **{k: v for k, v in values.items() if has_value(v)},
                        )
                        summary.created += 1
                    elif merge_fields(row, values):
                        summary.updated += 1
                    else:
                        summary.unchanged += 1
                await session.commit()
        except SQLAlchemyError as exc:
            raise DataProcessingError(f"Failed to save repositories: {exc}") from exc
        return summary

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def find_or_create_user(
        self,
        scope_id: str,
        username: str,
        *,
        email: str | None = None,
        display_name: str | None = None,
        repository_name: str | None = None,
        match_by_email: bool = True,
    ) -> ScmUserRow:
        """Return the stored user for (scope, username), creating it if absent.

        The insert runs in its own transaction. If a concurrent scan inserted
        the same user first, the unique constraint rejects ours; the
        transaction is rolled back and the winner is re-read. A second
        conflict raises.

        Raises:
            DataProcessingError: the user could be neither found nor created.
        """
        for attempt in (1, 2):
            async with self.session_factory() as session:
                repo = ScmUserRepository(session)
                row = await repo.get_by_username(scope_id, username)
                if row is None and match_by_email and email:
                    row = await repo.get_by_email(scope_id, email)
                if row is not None:
                    if merge_fields(row, {"email": row.email or email, "display_name": row.display_name or display_name}):
                        await session.commit()
                    return row

                try:
                    row = await repo.create(
                        user_id=generate_id(USER_PREFIX),
                        scope_id=scope_id,
                        username=username,
                        email=email,
                        display_name=display_name,
                        repository_name=repository_name,
                        active=True,
                    )
                    await session.commit()
                    return row
                except IntegrityError:
                    await session.rollback()
                    logger.info(
                        "User %s was created concurrently in scope %s (attempt %d); re-reading",
                        username, scope_id, attempt,
                    )

        raise DataProcessingError(
            f"Could not find or create user '{username}' in scope {scope_id}",
            details={"scope_id": scope_id, "username": username},
        )
