"""Bitbucket Server / Data Center fetch strategy (REST API 1.0)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

from scmsync.models.enums import FileChangeType, GitPlatform, MergeRequestState
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
from scmsync.services.timeutil import parse_datetime

logger = logging.getLogger(__name__)

# Activity action -> pickup heuristic kind
_ACTIVITY_KINDS = {
    "COMMENTED": "comment",
    "APPROVED": "approval",
    "REVIEWED": "review",
    "UNAPPROVED": "review",
    "RESCOPED": "review",
    "MERGED": "review",
}


def _self_link(item: dict) -> str | None:
    links = dig(item, "links", "self") or []
    return links[0].get("href") if links else None


def _user(identity: dict | None) -> tuple[str | None, str | None, str | None]:
    """Return (username, display name, email) for a Server user object."""
    if not identity:
        return None, None, None
    return identity.get("name") or identity.get("slug"), identity.get("displayName"), identity.get("emailAddress")


def diff_file_changes(body: dict) -> list[FileChange]:
    """Per-file line counts from a ``/diff`` response (hunks of typed segments)."""
    changes = []
    for diff in body.get("diffs") or []:
        source = dig(diff, "source", "toString")
        destination = dig(diff, "destination", "toString")
        path = destination or source
        if path is None:
            continue
        if source is None:
            change_type = FileChangeType.ADDED
        elif destination is None:
            change_type = FileChangeType.DELETED
        elif source != destination:
            change_type = FileChangeType.RENAMED
        else:
            change_type = FileChangeType.MODIFIED

        added = removed = 0
        for hunk in diff.get("hunks") or []:
            for segment in hunk.get("segments") or []:
                lines = len(segment.get("lines") or [])
                if segment.get("type") == "ADDED":
                    added += lines
                elif segment.get("type") == "REMOVED":
                    removed += lines

        changes.append(FileChange(
            path=path,
            previous_path=source if change_type == FileChangeType.RENAMED else None,
            change_type=change_type,
            added_lines=added,
            removed_lines=removed,
            changed_lines=added + removed,
            is_binary=bool(diff.get("binary")) or is_binary_path(path),
        ))
    return changes


class BitbucketServerStrategy(PlatformFetchStrategy):
    """Fetches from a self-hosted Bitbucket Server or Data Center instance.

    The repository owner is the project key. Authentication is HTTP Basic
    with username and password, or a bearer HTTP access token. Pages are
    requested with ``start``/``limit`` until the body reports ``isLastPage``.
    """

    platform = GitPlatform.BITBUCKET_SERVER

    def api_base_url(self, repo: GitUrlInfo) -> str:
        return f"{repo.server_url}/rest/api/1.0"

    def auth_for(self, credential: Credential) -> tuple[dict[str, str], tuple[str, str] | None]:
        headers = {"Accept": "application/json"}
        if credential.username and credential.secret:
            return headers, (credential.username, credential.secret)
        if credential.secret:
            headers["Authorization"] = f"Bearer {credential.secret}"
        return headers, None

    @staticmethod
    def _repo_path(repo: GitUrlInfo) -> str:
        return f"/projects/{repo.project or repo.owner}/repos/{repo.repository}"

    async def fetch_repositories(
        self,
        repo: GitUrlInfo,
        credential: Credential,
        since: datetime | None = None,
    ) -> list[RepositoryRecord]:
        project = repo.project or repo.owner
        async with self.client(repo, credential) as http:
            items = [r async for page in self._pages(http, f"/projects/{project}/repos", {}) for r in page]

        records = [
            RepositoryRecord(
                full_name=f"{project}/{item['slug']}",
                name=item["slug"],
                url=_self_link(item),
                is_private=not item.get("public", False),
                platform_data={"id": item.get("id")},
            )
            for item in items
            if item.get("slug")
        ]
        logger.info("Bitbucket Server: %d repositories in project %s", len(records), project)
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
        params = {"until": f"refs/heads/{branch}"} if branch else {}

        count = 0
        async with self.client(repo, credential) as http:
            async for page in self._pages(http, f"{self._repo_path(repo)}/commits", params):
                for item in page:
                    committed = parse_datetime(item.get("committerTimestamp") or item.get("authorTimestamp"))
                    if after_window(committed, until):
                        continue
                    if before_window(committed, since):
                        return
                    record = self._to_commit(item, repo, branch)
                    await self.fetch_commit_diff_stats(http, repo, record)
                    yield record
                    count += 1
                    if limit and count >= limit:
                        return

    async def fetch_commit_diff_stats(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: CommitRecord,
    ) -> None:
        body = await self.guarded(
            f"diff for commit {record.sha[:12]}",
            lambda: http.get_json(f"{self._repo_path(repo)}/commits/{record.sha}/diff"),
            None,
        )
        if body is not None:
            files = diff_file_changes(body)
            record.file_changes = files
            record.files_changed = len(files)
            record.added_lines = sum(f.added_lines for f in files)
            record.removed_lines = sum(f.removed_lines for f in files)
            record.changed_lines = record.added_lines + record.removed_lines

    @staticmethod
    def _to_commit(item: dict, repo: GitUrlInfo, branch: str | None) -> CommitRecord:
        author, author_name, author_email = _user(item.get("author"))
        committer, committer_name, committer_email = _user(item.get("committer") or item.get("author"))
        parents = [p["id"] for p in item.get("parents") or [] if p.get("id")]
        return CommitRecord(
            sha=item["id"],
            repository_name=repo.full_name,
            repo_slug=repo.repository,
            branch_names=[branch] if branch else [],
            message=item.get("message"),
            author_username=author,
            author_name=author_name,
            author_email=author_email,
            committer_username=committer,
            committer_name=committer_name,
            committer_email=committer_email,
            authored_at=parse_datetime(item.get("authorTimestamp")),
            committed_at=parse_datetime(item.get("committerTimestamp") or item.get("authorTimestamp")),
            parent_shas=parents,
            is_merge_commit=len(parents) > 1,
            commit_url=f"{repo.server_url}{BitbucketServerStrategy._repo_path(repo)}/commits/{item['id']}",
        )

    # ------------------------------------------------------------------
    # Pull requests
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
        params: dict[str, Any] = {"state": "ALL", "order": "NEWEST"}
        if branch:
            params["at"] = f"refs/heads/{branch}"
            params["direction"] = "INCOMING"

        count = 0
        async with self.client(repo, credential) as http:
            async for page in self._pages(http, f"{self._repo_path(repo)}/pull-requests", params):
                for item in page:
                    record = self._to_merge_request(item, repo)
                    # NEWEST orders by id, not activity: filter without stopping
                    if before_window(record.activity_at, since) or after_window(record.created_on, until):
                        continue
                    await self.enrich_merge_request(http, repo, record)
                    yield record
                    count += 1
                    if limit and count >= limit:
                        return

    @staticmethod
    def _to_merge_request(item: dict, repo: GitUrlInfo) -> MergeRequestRecord:
        username, display_name, email = _user(dig(item, "author", "user"))
        state = normalize_state(item.get("state"))
        closed = parse_datetime(item.get("closedDate"))
        if closed is None and state in (MergeRequestState.MERGED, MergeRequestState.CLOSED):
            closed = parse_datetime(item.get("updatedDate"))
        reviewers = [name for name in (_user(r.get("user"))[0] for r in item.get("reviewers") or []) if name]
        return MergeRequestRecord(
            external_id=str(item["id"]),
            repository_name=repo.full_name,
            repo_slug=repo.repository,
            title=item.get("title"),
            description=item.get("description"),
            state=state,
            source_branch=dig(item, "fromRef", "displayId"),
            target_branch=dig(item, "toRef", "displayId"),
            author_username=username,
            author_name=display_name,
            author_email=email,
            reviewers=reviewers,
            is_draft=item.get("draft"),
            comment_count=dig(item, "properties", "commentCount"),
            created_on=parse_datetime(item.get("createdDate")),
            updated_on=parse_datetime(item.get("updatedDate")),
            merged_at=closed if state == MergeRequestState.MERGED else None,
            closed_at=closed,
            merge_commit_sha=dig(item, "properties", "mergeCommit", "id"),
            url=_self_link(item),
        )

    async def fetch_merge_request_changes(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: MergeRequestRecord,
    ) -> None:
        base = f"{self._repo_path(repo)}/pull-requests/{record.external_id}"
        body = await self.guarded(
            f"diff for pull request #{record.external_id}",
            lambda: http.get_json(f"{base}/diff"),
            None,
        )
        if body is not None:
            files = diff_file_changes(body)
            record.files_changed = len(files)
            record.added_lines = sum(f.added_lines for f in files)
            record.removed_lines = sum(f.removed_lines for f in files)
            record.lines_changed = record.added_lines + record.removed_lines

        commits = await self.guarded(
            f"commits for pull request #{record.external_id}",
            lambda: self._collect(http, f"{base}/commits"),
            None,
        )
        if commits is not None:
            record.commit_count = len(commits)

    async def fetch_review_pickup_timestamp(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: MergeRequestRecord,
    ) -> datetime | None:
        entries = await self.guarded(
            f"activities for pull request #{record.external_id}",
            lambda: self._collect(
                http, f"{self._repo_path(repo)}/pull-requests/{record.external_id}/activities",
            ),
            None,
        )
        if entries is None:
            return None

        activities = []
        for entry in entries:
            kind = _ACTIVITY_KINDS.get(entry.get("action"))
            if kind is None:
                continue
            activities.append(ReviewActivity(
                actor=_user(entry.get("user"))[0],
                timestamp=parse_datetime(entry.get("createdDate")),
                body=dig(entry, "comment", "text"),
                kind=kind,
            ))
        if record.comment_count is None:
            record.comment_count = sum(1 for a in activities if a.kind == "comment")
        return first_review_activity(
            activities, record.author_username, record.created_on,
            self.settings.min_reviewer_comment_length,
        )

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    async def _pages(self, http: PlatformHttpClient, url: str, params: dict) -> AsyncIterator[list]:
        """Yield ``values`` until a page reports ``isLastPage``."""
        start = 0
        while True:
            body = await http.get_json(url, {**params, "start": start, "limit": self.page_size})
            yield body.get("values") or []
            next_start = body.get("nextPageStart")
            if body.get("isLastPage", True) or next_start is None:
                return
            start = next_start

    async def _collect(self, http: PlatformHttpClient, url: str) -> list[dict]:
        return [entry async for page in self._pages(http, url, {}) for entry in page]
