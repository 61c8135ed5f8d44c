"""GitHub fetch strategy (github.com and GitHub Enterprise Server)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

import httpx

from scmsync.errors.exceptions import RepositoryNotFoundError
from scmsync.models.enums import GitPlatform
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

# Review states that count as reviewer activity
_REVIEW_STATES = {"APPROVED", "COMMENTED", "CHANGES_REQUESTED", "DISMISSED"}


class GitHubStrategy(PlatformFetchStrategy):
    """Fetches repositories, commits and pull requests from the GitHub REST API v3.

    Pagination follows the ``Link: <...>; rel="next"`` header. Commit diff
    stats, pull request details and reviews are secondary per-record calls.
    """

    platform = GitPlatform.GITHUB

    def api_base_url(self, repo: GitUrlInfo) -> str:
        if repo.host == "github.com":
            return self.settings.github_api_url
        return f"{repo.server_url}/api/v3"

    def auth_for(self, credential: Credential) -> tuple[dict[str, str], None]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if credential.secret:
            headers["Authorization"] = f"Bearer {credential.secret}"
        return headers, None

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    async def fetch_repositories(
        self,
        repo: GitUrlInfo,
        credential: Credential,
        since: datetime | None = None,
    ) -> list[RepositoryRecord]:
        params = {"per_page": self.page_size, "sort": "pushed"}
        async with self.client(repo, credential) as http:
            try:
                items = [item async for page in self._pages(http, f"/orgs/{repo.owner}/repos", params) for item in page]
            except RepositoryNotFoundError:
                logger.debug("%s is not an organization, listing user repositories", repo.owner)
                items = [item async for page in self._pages(http, f"/users/{repo.owner}/repos", params) for item in page]

        records = []
        for item in items:
            pushed = parse_datetime(item.get("pushed_at"))
            if before_window(pushed, since):
                continue
            records.append(RepositoryRecord(
                full_name=item["full_name"],
                name=item["name"],
                url=item.get("html_url"),
                default_branch=item.get("default_branch"),
                is_private=item.get("private"),
                last_activity_at=pushed,
                platform_data={"id": item.get("id"), "archived": item.get("archived")},
            ))
        logger.info("GitHub: %d repositories for %s", len(records), repo.owner)
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
        params: dict[str, Any] = {"per_page": self.page_size}
        if branch:
            params["sha"] = branch
        if since:
            params["since"] = to_iso(since)
        if until:
            params["until"] = to_iso(until)

        base = f"/repos/{repo.owner}/{repo.repository}"
        count = 0
        async with self.client(repo, credential) as http:
            async for page in self._pages(http, f"{base}/commits", params):
                for item in page:
                    record = self._to_commit(item, repo, branch)
                    await self.fetch_commit_diff_stats(http, repo, record)
                    yield record
                    count += 1
                    if limit and count >= limit:
                        return

    @staticmethod
    def _to_commit(item: dict, repo: GitUrlInfo, branch: str | None) -> CommitRecord:
        commit = item.get("commit") or {}
        parents = [p["sha"] for p in item.get("parents") or [] if p.get("sha")]
        return CommitRecord(
            sha=item["sha"],
            repository_name=repo.full_name,
            repo_slug=repo.repository,
            branch_names=[branch] if branch else [],
            message=commit.get("message"),
            author_username=dig(item, "author", "login"),
            author_name=dig(commit, "author", "name"),
            author_email=dig(commit, "author", "email"),
            committer_username=dig(item, "committer", "login"),
            committer_name=dig(commit, "committer", "name"),
            committer_email=dig(commit, "committer", "email"),
            authored_at=parse_datetime(dig(commit, "author", "date")),
            committed_at=parse_datetime(dig(commit, "committer", "date")),
            parent_shas=parents,
            is_merge_commit=len(parents) > 1,
            commit_url=item.get("html_url"),
            platform_data={"node_id": item.get("node_id")} if item.get("node_id") else {},
        )

    async def fetch_commit_diff_stats(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: CommitRecord,
    ) -> None:
        detail = await self.guarded(
            f"diff stats for commit {record.sha[:12]}",
            lambda: http.get_json(f"/repos/{repo.owner}/{repo.repository}/commits/{record.sha}"),
            None,
        )
        if detail:
            self._apply_diff_stats(record, detail)

    @staticmethod
    def _apply_diff_stats(record: CommitRecord, detail: dict) -> None:
        stats = detail.get("stats") or {}
        files = detail.get("files") or []
        record.added_lines = stats.get("additions", 0)
        record.removed_lines = stats.get("deletions", 0)
        record.changed_lines = stats.get("total", record.added_lines + record.removed_lines)
        record.files_changed = len(files)
        record.file_changes = [
            FileChange(
                path=f["filename"],
                previous_path=f.get("previous_filename"),
                change_type=normalize_change_type(f.get("status")),
                added_lines=f.get("additions", 0),
                removed_lines=f.get("deletions", 0),
                changed_lines=f.get("changes", 0),
                is_binary=is_binary_path(f["filename"]) or ("patch" not in f and f.get("changes", 0) == 0),
            )
            for f in files
            if f.get("filename")
        ]

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
        params: dict[str, Any] = {
            "state": "all",
            "sort": "updated",
            "direction": "desc",
            "per_page": self.page_size,
        }
        if branch:
            params["base"] = branch

        base = f"/repos/{repo.owner}/{repo.repository}"
        count = 0
        async with self.client(repo, credential) as http:
            async for page in self._pages(http, f"{base}/pulls", params):
                for item in page:
                    updated = parse_datetime(item.get("updated_at"))
                    if after_window(updated, until):
                        continue
                    if before_window(updated, since):
                        # Sorted by update time: everything after is older
                        return
                    record = self._to_merge_request(item, repo)
                    await self.enrich_merge_request(http, repo, record)
                    yield record
                    count += 1
                    if limit and count >= limit:
                        return

    @staticmethod
    def _to_merge_request(item: dict, repo: GitUrlInfo) -> MergeRequestRecord:
        merged_at = parse_datetime(item.get("merged_at"))
        return MergeRequestRecord(
            external_id=str(item["number"]),
            repository_name=repo.full_name,
            repo_slug=repo.repository,
            title=item.get("title"),
            description=item.get("body"),
            state=normalize_state(item.get("state"), merged=merged_at is not None),
            source_branch=dig(item, "head", "ref"),
            target_branch=dig(item, "base", "ref"),
            author_username=dig(item, "user", "login"),
            reviewers=[r["login"] for r in item.get("requested_reviewers") or [] if r.get("login")],
            is_draft=item.get("draft"),
            created_on=parse_datetime(item.get("created_at")),
            updated_on=parse_datetime(item.get("updated_at")),
            merged_at=merged_at,
            closed_at=parse_datetime(item.get("closed_at")),
            merge_commit_sha=item.get("merge_commit_sha"),
            url=item.get("html_url"),
            labels=[label["name"] for label in item.get("labels") or [] if label.get("name")],
            platform_data={"id": item.get("id")},
        )

    async def fetch_merge_request_changes(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: MergeRequestRecord,
    ) -> None:
        number = record.external_id
        detail = await self.guarded(
            f"details for pull request #{number}",
            lambda: http.get_json(f"/repos/{repo.owner}/{repo.repository}/pulls/{number}"),
            None,
        )
        if detail:
            record.added_lines = detail.get("additions")
            record.removed_lines = detail.get("deletions")
            if record.added_lines is not None and record.removed_lines is not None:
                record.lines_changed = record.added_lines + record.removed_lines
            record.files_changed = detail.get("changed_files")
            record.commit_count = detail.get("commits")
            record.comment_count = (detail.get("comments") or 0) + (detail.get("review_comments") or 0)

    async def fetch_review_pickup_timestamp(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: MergeRequestRecord,
    ) -> datetime | None:
        """First submitted review by someone other than the author; reviewers are collected on the way."""
        number = record.external_id
        reviews = await self.guarded(
            f"reviews for pull request #{number}",
            lambda: http.get_json(
                f"/repos/{repo.owner}/{repo.repository}/pulls/{number}/reviews", {"per_page": self.page_size},
            ),
            None,
        )
        if reviews is None:
            return None

        activities = [
            ReviewActivity(
                actor=dig(review, "user", "login"),
                timestamp=parse_datetime(review.get("submitted_at")),
                body=review.get("body"),
                kind="review",
            )
            for review in reviews
            if review.get("state") in _REVIEW_STATES
        ]
        for activity in activities:
            if activity.actor and activity.actor != record.author_username and activity.actor not in record.reviewers:
                record.reviewers.append(activity.actor)

        return first_review_activity(
            activities, record.author_username, record.created_on,
            self.settings.min_reviewer_comment_length,
        )

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    @staticmethod
    async def _pages(http: PlatformHttpClient, url: str, params: dict | None) -> AsyncIterator[list]:
        """Yield one decoded page at a time, following ``rel="next"`` links."""
        next_url: str | None = url
        next_params = params
        while next_url:
            response: httpx.Response = await http.get(next_url, next_params)
            page = http.decode(response, next_url)
            yield page if isinstance(page, list) else []
            next_url = response.links.get("next", {}).get("url")
            # The next link already carries the query string
            next_params = None
