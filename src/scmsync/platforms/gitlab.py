"""GitLab fetch strategy (gitlab.com and self-managed instances)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any
from urllib.parse import quote

from scmsync.errors.exceptions import RepositoryNotFoundError
from scmsync.models.enums import FileChangeType, GitPlatform
from scmsync.models.records import CommitRecord, FileChange, MergeRequestRecord, RepositoryRecord
from scmsync.models.scan import Credential
from scmsync.platforms.base import (
    PlatformFetchStrategy,
    after_window,
    before_window,
    dig,
    is_binary_path,
    normalize_state,
)
from scmsync.platforms.http import PlatformHttpClient
from scmsync.platforms.pickup import ReviewActivity, first_review_activity
from scmsync.scanning.url_parser import GitUrlInfo
from scmsync.services.timeutil import parse_datetime, to_iso

logger = logging.getLogger(__name__)


def count_diff_lines(diff: str | None) -> tuple[int, int]:
    """Count (added, removed) lines of a unified diff body."""
    added = removed = 0
    for line in (diff or "").splitlines():
        if line.startswith("+") and not line.startswith("+++"):
            added += 1
        elif line.startswith("-") and not line.startswith("---"):
            removed += 1
    return added, removed


def _file_change(change: dict) -> FileChange:
    if change.get("new_file"):
        change_type = FileChangeType.ADDED
    elif change.get("deleted_file"):
        change_type = FileChangeType.DELETED
    elif change.get("renamed_file"):
        change_type = FileChangeType.RENAMED
    else:
        change_type = FileChangeType.MODIFIED
    added, removed = count_diff_lines(change.get("diff"))
    path = change.get("new_path") or change.get("old_path")
    return FileChange(
        path=path,
        previous_path=change.get("old_path") if change_type == FileChangeType.RENAMED else None,
        change_type=change_type,
        added_lines=added,
        removed_lines=removed,
        changed_lines=added + removed,
        is_binary=is_binary_path(path) or (change.get("diff") or "").startswith("Binary files"),
    )


class GitLabStrategy(PlatformFetchStrategy):
    """Fetches projects, commits and merge requests from the GitLab REST API v4.

    Projects are addressed by their URL-encoded full path, so nested
    sub-groups work without a project-id lookup. Pagination follows the
    ``X-Next-Page`` header.
    """

    platform = GitPlatform.GITLAB

    def api_base_url(self, repo: GitUrlInfo) -> str:
        return f"{repo.server_url}/api/v4"

    def auth_for(self, credential: Credential) -> tuple[dict[str, str], None]:
        headers = {"Accept": "application/json"}
        if credential.secret:
            headers["PRIVATE-TOKEN"] = credential.secret
        return headers, None

    @staticmethod
    def _project_path(repo: GitUrlInfo) -> str:
        return "/projects/" + quote(repo.full_name, safe="")

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    async def fetch_repositories(
        self,
        repo: GitUrlInfo,
        credential: Credential,
        since: datetime | None = None,
    ) -> list[RepositoryRecord]:
        params: dict[str, Any] = {"include_subgroups": "true", "order_by": "last_activity_at"}
        if since:
            params["last_activity_after"] = to_iso(since)
        group = quote(repo.namespace or repo.owner, safe="")

        async with self.client(repo, credential) as http:
            try:
                items = [p async for page in self._pages(http, f"/groups/{group}/projects", params) for p in page]
            except RepositoryNotFoundError:
                logger.debug("%s is not a group, listing user projects", repo.owner)
                params.pop("include_subgroups")
                items = [p async for page in self._pages(http, f"/users/{repo.owner}/projects", params) for p in page]

        records = [
            RepositoryRecord(
                full_name=item["path_with_namespace"],
                name=item.get("path") or item["name"],
                url=item.get("web_url"),
                default_branch=item.get("default_branch"),
                is_private=item.get("visibility") not in (None, "public"),
                last_activity_at=parse_datetime(item.get("last_activity_at")),
                platform_data={"id": item.get("id")},
            )
            for item in items
            if item.get("path_with_namespace")
        ]
        logger.info("GitLab: %d projects under %s", len(records), repo.namespace or repo.owner)
        return records

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    async def iter_commits(
        self,
        repo: GitUrlInfo,
        branch: str | None,
        credential: Credential,
        since: datetime | None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[CommitRecord]:
        params: dict[str, Any] = {"with_stats": "true"}
        if branch:
            params["ref_name"] = branch
        if since:
            params["since"] = to_iso(since)
        if until:
            params["until"] = to_iso(until)

        project = self._project_path(repo)
        count = 0
        async with self.client(repo, credential) as http:
            async for page in self._pages(http, f"{project}/repository/commits", params):
                for item in page:
                    record = self._to_commit(item, repo, branch)
                    await self.fetch_commit_diff_stats(http, repo, record)
                    yield record
                    count += 1
                    if limit and count >= limit:
                        return

    @staticmethod
    def _to_commit(item: dict, repo: GitUrlInfo, branch: str | None) -> CommitRecord:
        parents = list(item.get("parent_ids") or [])
        stats = item.get("stats") or {}
        return CommitRecord(
            sha=item["id"],
            repository_name=repo.full_name,
            repo_slug=repo.repository,
            branch_names=[branch] if branch else [],
            message=item.get("message") or item.get("title"),
            author_name=item.get("author_name"),
            author_email=item.get("author_email"),
            committer_name=item.get("committer_name"),
            committer_email=item.get("committer_email"),
            authored_at=parse_datetime(item.get("authored_date")),
            committed_at=parse_datetime(item.get("committed_date")),
            added_lines=stats.get("additions"),
            removed_lines=stats.get("deletions"),
            changed_lines=stats.get("total"),
            parent_shas=parents,
            is_merge_commit=len(parents) > 1,
            commit_url=item.get("web_url"),
        )

    async def fetch_commit_diff_stats(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: CommitRecord,
    ) -> None:
        """Per-file changes; line totals already come from ``with_stats``."""
        diff = await self.guarded(
            f"diff for commit {record.sha[:12]}",
            lambda: http.get_json(f"{self._project_path(repo)}/repository/commits/{record.sha}/diff"),
            None,
        )
        if diff:
            record.file_changes = [_file_change(c) for c in diff]
            record.files_changed = len(record.file_changes)

    # ------------------------------------------------------------------
    # Merge requests
    # ------------------------------------------------------------------

    async def iter_merge_requests(
        self,
        repo: GitUrlInfo,
        branch: str | None,
        credential: Credential,
        since: datetime | None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[MergeRequestRecord]:
        params: dict[str, Any] = {"state": "all", "order_by": "updated_at", "sort": "desc"}
        if branch:
            params["target_branch"] = branch
        if since:
            params["updated_after"] = to_iso(since)
        if until:
            params["updated_before"] = to_iso(until)

        project = self._project_path(repo)
        count = 0
        async with self.client(repo, credential) as http:
            async for page in self._pages(http, f"{project}/merge_requests", params):
                for item in page:
                    updated = parse_datetime(item.get("updated_at"))
                    if after_window(updated, until):
                        continue
                    if before_window(updated, since):
                        return
                    record = self._to_merge_request(item, repo)
                    await self.enrich_merge_request(http, repo, record)
                    yield record
                    count += 1
                    if limit and count >= limit:
                        return

    @staticmethod
    def _to_merge_request(item: dict, repo: GitUrlInfo) -> MergeRequestRecord:
        reviewers = [r["username"] for r in item.get("reviewers") or [] if r.get("username")]
        return MergeRequestRecord(
            external_id=str(item["iid"]),
            repository_name=repo.full_name,
            repo_slug=repo.repository,
            title=item.get("title"),
            description=item.get("description"),
            state=normalize_state(item.get("state")),
            source_branch=item.get("source_branch"),
            target_branch=item.get("target_branch"),
            author_username=dig(item, "author", "username"),
            author_name=dig(item, "author", "name"),
            reviewers=reviewers,
            is_draft=item.get("draft", item.get("work_in_progress")),
            comment_count=item.get("user_notes_count"),
            created_on=parse_datetime(item.get("created_at")),
            updated_on=parse_datetime(item.get("updated_at")),
            merged_at=parse_datetime(item.get("merged_at")),
            closed_at=parse_datetime(item.get("closed_at")),
            merge_commit_sha=item.get("merge_commit_sha") or item.get("squash_commit_sha"),
            url=item.get("web_url"),
            labels=[label for label in item.get("labels") or [] if isinstance(label, str)],
            platform_data={"id": item.get("id"), "has_conflicts": item.get("has_conflicts")},
        )

    async def fetch_merge_request_changes(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: MergeRequestRecord,
    ) -> None:
        iid = record.external_id
        changes = await self.guarded(
            f"changes for merge request !{iid}",
            lambda: http.get_json(f"{self._project_path(repo)}/merge_requests/{iid}/changes"),
            None,
        )
        if changes:
            files = [_file_change(c) for c in changes.get("changes") or []]
            record.files_changed = len(files)
            record.added_lines = sum(f.added_lines for f in files)
            record.removed_lines = sum(f.removed_lines for f in files)
            record.lines_changed = record.added_lines + record.removed_lines

    async def fetch_review_pickup_timestamp(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: MergeRequestRecord,
    ) -> datetime | None:
        iid = record.external_id
        notes = await self.guarded(
            f"notes for merge request !{iid}",
            lambda: http.get_json(
                f"{self._project_path(repo)}/merge_requests/{iid}/notes",
                {"sort": "asc", "order_by": "created_at", "per_page": self.page_size},
            ),
            None,
        )
        if notes is None:
            return None

        activities = [
            ReviewActivity(
                actor=dig(note, "author", "username"),
                timestamp=parse_datetime(note.get("created_at")),
                body=note.get("body"),
                kind="system" if note.get("system") else "comment",
            )
            for note in notes
        ]
        return first_review_activity(
            activities, record.author_username, record.created_on,
            self.settings.min_reviewer_comment_length,
        )

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    async def _pages(self, http: PlatformHttpClient, url: str, params: dict) -> AsyncIterator[list]:
        """Yield one decoded page at a time, following ``X-Next-Page``."""
        query = {**params, "per_page": self.page_size, "page": 1}
        while True:
            response = await http.get(url, query)
            page = http.decode(response, url)
            yield page if isinstance(page, list) else []
            next_page = response.headers.get("X-Next-Page")
            if not next_page:
                return
            query = {**query, "page": int(next_page)}
