"""Bitbucket Cloud fetch strategy."""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

from scmsync.models.enums import GitPlatform, MergeRequestState
from scmsync.models.records import CommitRecord, FileChange, MergeRequestRecord, RepositoryRecord
from scmsync.models.scan import Credential
from scmsync.platforms.base import (
    PlatformFetchStrategy,
    after_window,
    before_window,
    dig,
    is_binary_path,
    normalize_change_type,
    normalize_state,
)
from scmsync.platforms.http import PlatformHttpClient
from scmsync.platforms.pickup import ReviewActivity, first_review_activity
from scmsync.scanning.url_parser import GitUrlInfo
from scmsync.services.timeutil import parse_datetime, to_iso

logger = logging.getLogger(__name__)

_RAW_AUTHOR_RE = re.compile(r"^\s*(?P<name>.*?)\s*<(?P<email>[^>]*)>\s*$")

_PULL_REQUEST_STATES = ["OPEN", "MERGED", "DECLINED", "SUPERSEDED"]


def parse_raw_author(raw: str | None) -> tuple[str | None, str | None]:
    """Split ``"Jane Doe <jane@example.com>"`` into (name, email)."""
    if not raw:
        return None, None
    match = _RAW_AUTHOR_RE.match(raw)
    if not match:
        return raw.strip() or None, None
    return match.group("name") or None, match.group("email") or None


def _account_name(account: dict | None) -> str | None:
    if not account:
        return None
    return account.get("nickname") or account.get("username") or account.get("display_name")


def _diffstat_change(entry: dict) -> FileChange:
    path = dig(entry, "new", "path") or dig(entry, "old", "path")
    added = entry.get("lines_added") or 0
    removed = entry.get("lines_removed") or 0
    change_type = normalize_change_type(entry.get("status"))
    return FileChange(
        path=path,
        previous_path=dig(entry, "old", "path") if entry.get("status") == "renamed" else None,
        change_type=change_type,
        added_lines=added,
        removed_lines=removed,
        changed_lines=added + removed,
        is_binary=is_binary_path(path),
    )


class BitbucketStrategy(PlatformFetchStrategy):
    """Fetches repositories, commits and pull requests from the Bitbucket Cloud API 2.0.

    Authentication is HTTP Basic with the connection username and an app
    password (or API token); a bare token is sent as ``Bearer``. Pagination
    follows the ``next`` URL in each page body.
    """

    platform = GitPlatform.BITBUCKET

    def api_base_url(self, repo: GitUrlInfo) -> str:
        return self.settings.bitbucket_api_url

    def auth_for(self, credential: Credential) -> tuple[dict[str, str], tuple[str, str] | None]:
        headers = {"Accept": "application/json"}
        if credential.username and credential.secret:
            return headers, (credential.username, credential.secret)
        if credential.secret:
            headers["Authorization"] = f"Bearer {credential.secret}"
        return headers, None

    @staticmethod
    def _repo_path(repo: GitUrlInfo) -> str:
        return f"/repositories/{repo.owner}/{repo.repository}"

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    async def fetch_repositories(
        self,
        repo: GitUrlInfo,
        credential: Credential,
        since: datetime | None = None,
    ) -> list[RepositoryRecord]:
        params: dict[str, Any] = {"pagelen": min(self.page_size, 100), "sort": "-updated_on"}
        if since:
            params["q"] = f"updated_on>={to_iso(since)}"

        async with self.client(repo, credential) as http:
            items = [r async for page in self._pages(http, f"/repositories/{repo.owner}", params) for r in page]

        records = [
            RepositoryRecord(
                full_name=item["full_name"],
                name=item.get("slug") or item["name"],
                url=dig(item, "links", "html", "href"),
                default_branch=dig(item, "mainbranch", "name"),
                is_private=item.get("is_private"),
                last_activity_at=parse_datetime(item.get("updated_on")),
                platform_data={"uuid": item.get("uuid")},
            )
            for item in items
            if item.get("full_name")
        ]
        logger.info("Bitbucket: %d repositories in workspace %s", len(records), repo.owner)
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
        base = self._repo_path(repo)
        url = f"{base}/commits/{branch}" if branch else f"{base}/commits"
        params = {"pagelen": min(self.page_size, 100)}

        count = 0
        async with self.client(repo, credential) as http:
            async for page in self._pages(http, url, params):
                for item in page:
                    committed = parse_datetime(item.get("date"))
                    if after_window(committed, until):
                        continue
                    if before_window(committed, since):
                        # Newest first: nothing older belongs to this window
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
        changes = await self.guarded(
            f"diffstat for commit {record.sha[:12]}",
            lambda: self._collect(http, f"{self._repo_path(repo)}/diffstat/{record.sha}"),
            None,
        )
        if changes is not None:
            files = [_diffstat_change(entry) for entry in changes]
            record.file_changes = files
            record.files_changed = len(files)
            record.added_lines = sum(f.added_lines for f in files)
            record.removed_lines = sum(f.removed_lines for f in files)
            record.changed_lines = record.added_lines + record.removed_lines

    @staticmethod
    def _to_commit(item: dict, repo: GitUrlInfo, branch: str | None) -> CommitRecord:
        name, email = parse_raw_author(dig(item, "author", "raw"))
        user = dig(item, "author", "user")
        parents = [p["hash"] for p in item.get("parents") or [] if p.get("hash")]
        committed = parse_datetime(item.get("date"))
        return CommitRecord(
            sha=item["hash"],
            repository_name=repo.full_name,
            repo_slug=repo.repository,
            branch_names=[branch] if branch else [],
            message=item.get("message"),
            author_username=_account_name(user),
            author_name=(user or {}).get("display_name") or name,
            author_email=email,
            committer_username=_account_name(user),
            committer_name=name,
            committer_email=email,
            authored_at=committed,
            committed_at=committed,
            parent_shas=parents,
            is_merge_commit=len(parents) > 1,
            commit_url=dig(item, "links", "html", "href"),
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
        filters = []
        if branch:
            filters.append(f'destination.branch.name="{branch}"')
        if since:
            filters.append(f"updated_on>={to_iso(since)}")
        params: dict[str, Any] = {
            "state": _PULL_REQUEST_STATES,
            "sort": "-updated_on",
            "pagelen": 50,
        }
        if filters:
            params["q"] = " AND ".join(filters)

        base = self._repo_path(repo)
        count = 0
        async with self.client(repo, credential) as http:
            async for page in self._pages(http, f"{base}/pullrequests", params):
                for item in page:
                    updated = parse_datetime(item.get("updated_on"))
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
        state = normalize_state(item.get("state"))
        updated = parse_datetime(item.get("updated_on"))
        closed = updated if state in (MergeRequestState.MERGED, MergeRequestState.CLOSED) else None
        return MergeRequestRecord(
            external_id=str(item["id"]),
            repository_name=repo.full_name,
            repo_slug=repo.repository,
            title=item.get("title"),
            description=item.get("description"),
            state=state,
            source_branch=dig(item, "source", "branch", "name"),
            target_branch=dig(item, "destination", "branch", "name"),
            author_username=_account_name(item.get("author")),
            author_name=dig(item, "author", "display_name"),
            is_draft=item.get("draft"),
            comment_count=item.get("comment_count"),
            created_on=parse_datetime(item.get("created_on")),
            updated_on=updated,
            merged_at=closed if state == MergeRequestState.MERGED else None,
            closed_at=closed,
            merge_commit_sha=dig(item, "merge_commit", "hash"),
            url=dig(item, "links", "html", "href"),
            platform_data={"task_count": item.get("task_count")} if item.get("task_count") else {},
        )

    async def fetch_merge_request_changes(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: MergeRequestRecord,
    ) -> None:
        """Reviewers from the detail view, line counts from the diffstat."""
        base = self._repo_path(repo)
        pr_id = record.external_id
        detail = await self.guarded(
            f"details for pull request #{pr_id}",
            lambda: http.get_json(f"{base}/pullrequests/{pr_id}"),
            None,
        )
        if detail:
            record.reviewers = [
                name for name in (_account_name(r) for r in detail.get("reviewers") or []) if name
            ]

        changes = await self.guarded(
            f"diffstat for pull request #{pr_id}",
            lambda: self._collect(http, f"{base}/pullrequests/{pr_id}/diffstat"),
            None,
        )
        if changes is not None:
            files = [_diffstat_change(entry) for entry in changes]
            record.files_changed = len(files)
            record.added_lines = sum(f.added_lines for f in files)
            record.removed_lines = sum(f.removed_lines for f in files)
            record.lines_changed = record.added_lines + record.removed_lines

    async def fetch_review_pickup_timestamp(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: MergeRequestRecord,
    ) -> datetime | None:
        pr_id = record.external_id
        activity = await self.guarded(
            f"activity for pull request #{pr_id}",
            lambda: self._collect(http, f"{self._repo_path(repo)}/pullrequests/{pr_id}/activity"),
            None,
        )
        if activity is None:
            return None
        return first_review_activity(
            self._activities(activity), record.author_username, record.created_on,
            self.settings.min_reviewer_comment_length,
        )

    @staticmethod
    def _activities(entries: list[dict]) -> list[ReviewActivity]:
        activities = []
        for entry in entries:
            if "comment" in entry:
                comment = entry["comment"]
                activities.append(ReviewActivity(
                    actor=_account_name(comment.get("user")),
                    timestamp=parse_datetime(comment.get("created_on")),
                    body=dig(comment, "content", "raw"),
                    kind="comment",
                ))
            elif "approval" in entry:
                approval = entry["approval"]
                activities.append(ReviewActivity(
                    actor=_account_name(approval.get("user")),
                    timestamp=parse_datetime(approval.get("date")),
                    kind="approval",
                ))
            elif "changes_requested" in entry:
                change = entry["changes_requested"]
                activities.append(ReviewActivity(
                    actor=_account_name(change.get("user")),
                    timestamp=parse_datetime(change.get("date")),
                    kind="review",
                ))
        return activities

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    @staticmethod
    async def _pages(http: PlatformHttpClient, url: str, params: dict | None) -> AsyncIterator[list]:
        """Yield the ``values`` of each page, following the ``next`` link."""
        next_url: str | None = url
        next_params = params
        while next_url:
            body = await http.get_json(next_url, next_params)
            yield body.get("values") or []
            next_url = body.get("next")
            next_params = None

    async def _collect(self, http: PlatformHttpClient, url: str) -> list[dict]:
        return [entry async for page in self._pages(http, url, {"pagelen": 100}) for entry in page]
