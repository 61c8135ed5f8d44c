"""Azure Repos fetch strategy (Azure DevOps Services)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from datetime import datetime
from typing import Any
from urllib.parse import quote

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

_REF_PREFIX = "refs/heads/"


def strip_ref(ref: str | None) -> str | None:
    if ref and ref.startswith(_REF_PREFIX):
        return ref[len(_REF_PREFIX):]
    return ref


def _identity(identity: dict | None) -> tuple[str | None, str | None, str | None]:
    """Return (username, display name, email) for an Azure identity ref."""
    if not identity:
        return None, None, None
    unique = identity.get("uniqueName")
    email = unique if unique and "@" in unique else None
    return unique, identity.get("displayName"), email


def _note_activity(record: MergeRequestRecord, timestamps: Iterable[datetime | None]) -> None:
    """Move ``updated_on`` forward to the latest thread or commit activity."""
    latest = max((t for t in timestamps if t is not None), default=None)
    if latest is not None and (record.updated_on is None or latest > record.updated_on):
        record.updated_on = latest


class AzureReposStrategy(PlatformFetchStrategy):
    """Fetches repositories, commits and pull requests from the Azure DevOps Git REST API.

    Authentication is HTTP Basic with an empty user name and a personal access
    token. Pagination uses ``$top``/``$skip``; commit queries take them under
    the ``searchCriteria.`` prefix.
    """

    platform = GitPlatform.AZURE_REPOS

    def api_base_url(self, repo: GitUrlInfo) -> str:
        return (
            f"{self.settings.azure_devops_url.rstrip('/')}/{quote(repo.organization or repo.owner)}"
            f"/{quote(repo.project or repo.repository)}/_apis/git"
        )

    def auth_for(self, credential: Credential) -> tuple[dict[str, str], tuple[str, str] | None]:
        headers = {"Accept": "application/json"}
        if not credential.secret:
            return headers, None
        return headers, (credential.username or "", credential.secret)

    @staticmethod
    def _repo_path(repo: GitUrlInfo) -> str:
        return f"/repositories/{quote(repo.repository)}"

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    async def fetch_repositories(
        self,
        repo: GitUrlInfo,
        credential: Credential,
        since: datetime | None = None,
    ) -> list[RepositoryRecord]:
        async with self.client(repo, credential) as http:
            body = await http.get_json("/repositories", {"api-version": self.settings.azure_api_version})

        records = []
        for item in body.get("value") or []:
            last_update = parse_datetime(dig(item, "project", "lastUpdateTime"))
            if before_window(last_update, since):
                continue
            records.append(RepositoryRecord(
                full_name=f"{dig(item, 'project', 'name') or repo.project}/{item['name']}",
                name=item["name"],
                url=item.get("webUrl") or item.get("remoteUrl"),
                default_branch=strip_ref(item.get("defaultBranch")),
                is_private=dig(item, "project", "visibility") != "public",
                last_activity_at=last_update,
                platform_data={"id": item.get("id"), "size": item.get("size")},
            ))
        logger.info("Azure Repos: %d repositories in %s/%s", len(records), repo.organization, repo.project)
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
        params: dict[str, Any] = {}
        if branch:
            params["searchCriteria.itemVersion.version"] = branch
            params["searchCriteria.itemVersion.versionType"] = "branch"
        if since:
            params["searchCriteria.fromDate"] = to_iso(since)
        if until:
            params["searchCriteria.toDate"] = to_iso(until)

        base = self._repo_path(repo)
        count = 0
        async with self.client(repo, credential) as http:
            pages = self._pages(http, f"{base}/commits", params, prefix="searchCriteria.")
            async for page in pages:
                for item in page:
                    record = self._to_commit(item, repo, branch)
                    await self.fetch_commit_diff_stats(http, repo, record)
                    yield record
                    count += 1
                    if limit and count >= limit:
                        return

    async def fetch_commit_diff_stats(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: CommitRecord,
    ) -> None:
        """Per-file change types only; the changes API carries no line counts."""
        changes = await self.guarded(
            f"changes for commit {record.sha[:12]}",
            lambda: http.get_json(
                f"{self._repo_path(repo)}/commits/{record.sha}/changes",
                {"api-version": self.settings.azure_api_version},
            ),
            None,
        )
        if changes:
            record.file_changes = [
                FileChange(
                    path=dig(c, "item", "path"),
                    previous_path=c.get("sourceServerItem"),
                    change_type=normalize_change_type((c.get("changeType") or "").split(",")[-1]),
                    is_binary=is_binary_path(dig(c, "item", "path")),
                )
                for c in changes.get("changes") or []
                if dig(c, "item", "path") and not dig(c, "item", "isFolder")
            ]

    @staticmethod
    def _to_commit(item: dict, repo: GitUrlInfo, branch: str | None) -> CommitRecord:
        counts = item.get("changeCounts") or {}
        parents = list(item.get("parents") or [])
        return CommitRecord(
            sha=item["commitId"],
            repository_name=repo.full_name,
            repo_slug=repo.repository,
            branch_names=[branch] if branch else [],
            message=item.get("comment"),
            author_name=dig(item, "author", "name"),
            author_email=dig(item, "author", "email"),
            committer_name=dig(item, "committer", "name"),
            committer_email=dig(item, "committer", "email"),
            authored_at=parse_datetime(dig(item, "author", "date")),
            committed_at=parse_datetime(dig(item, "committer", "date")),
            files_changed=sum(counts.values()) if counts else None,
            parent_shas=parents,
            is_merge_commit=len(parents) > 1 if parents else None,
            commit_url=item.get("remoteUrl"),
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
        params: dict[str, Any] = {"searchCriteria.status": "all"}
        if branch:
            params["searchCriteria.targetRefName"] = f"{_REF_PREFIX}{branch}"

        base = self._repo_path(repo)
        count = 0
        async with self.client(repo, credential) as http:
            async for page in self._pages(http, f"{base}/pullrequests", params):
                for item in page:
                    record = self._to_merge_request(item, repo)
                    # Ordered by creation, not activity: filter without stopping
                    if after_window(record.created_on, until):
                        continue
                    # Open pull requests carry no update date; threads and commits supply it
                    if record.state != MergeRequestState.OPEN and before_window(record.activity_at, since):
                        continue
                    await self.enrich_merge_request(http, repo, record)
                    if before_window(record.activity_at, since):
                        continue
                    yield record
                    count += 1
                    if limit and count >= limit:
                        return

    @staticmethod
    def _to_merge_request(item: dict, repo: GitUrlInfo) -> MergeRequestRecord:
        username, display_name, email = _identity(item.get("createdBy"))
        state = normalize_state(item.get("status"))
        closed = parse_datetime(item.get("closedDate"))
        created = parse_datetime(item.get("creationDate"))
        reviewers = [r["uniqueName"] for r in item.get("reviewers") or [] if r.get("uniqueName")]
        return MergeRequestRecord(
            external_id=str(item["pullRequestId"]),
            repository_name=repo.full_name,
            repo_slug=repo.repository,
            title=item.get("title"),
            description=item.get("description"),
            state=state,
            source_branch=strip_ref(item.get("sourceRefName")),
            target_branch=strip_ref(item.get("targetRefName")),
            author_username=username,
            author_name=display_name,
            author_email=email,
            reviewers=reviewers,
            is_draft=item.get("isDraft"),
            created_on=created,
            updated_on=closed or created,
            merged_at=closed if state == MergeRequestState.MERGED else None,
            closed_at=closed,
            merge_commit_sha=dig(item, "lastMergeCommit", "commitId"),
            url=f"{repo.clone_url}/pullrequest/{item['pullRequestId']}",
            labels=[label["name"] for label in item.get("labels") or [] if label.get("name")],
            platform_data={"merge_status": item.get("mergeStatus")} if item.get("mergeStatus") else {},
        )

    async def fetch_merge_request_changes(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: MergeRequestRecord,
    ) -> None:
        pr_id = record.external_id
        commits = await self.guarded(
            f"commits for pull request {pr_id}",
            lambda: http.get_json(
                f"{self._repo_path(repo)}/pullrequests/{pr_id}/commits",
                {"api-version": self.settings.azure_api_version},
            ),
            None,
        )
        if commits:
            values = commits.get("value") or []
            record.commit_count = len(values)
            _note_activity(record, (parse_datetime(dig(c, "committer", "date")) for c in values))

    async def fetch_review_pickup_timestamp(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: MergeRequestRecord,
    ) -> datetime | None:
        """First non-author thread comment; also counts the human comments."""
        pr_id = record.external_id
        threads = await self.guarded(
            f"threads for pull request {pr_id}",
            lambda: http.get_json(
                f"{self._repo_path(repo)}/pullrequests/{pr_id}/threads",
                {"api-version": self.settings.azure_api_version},
            ),
            None,
        )
        if threads is None:
            return None

        activities = []
        comment_count = 0
        touched = []
        for thread in threads.get("value") or []:
            touched.append(parse_datetime(thread.get("lastUpdatedDate")))
            for comment in thread.get("comments") or []:
                touched.append(parse_datetime(comment.get("lastUpdatedDate") or comment.get("publishedDate")))
                is_system = comment.get("commentType") == "system"
                if not is_system:
                    comment_count += 1
                activities.append(ReviewActivity(
                    actor=dig(comment, "author", "uniqueName"),
                    timestamp=parse_datetime(comment.get("publishedDate")),
                    body=comment.get("content"),
                    kind="system" if is_system else "comment",
                ))
        record.comment_count = comment_count
        _note_activity(record, touched)
        return first_review_activity(
            activities, record.author_username, record.created_on,
            self.settings.min_reviewer_comment_length,
        )

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    async def _pages(
        self,
        http: PlatformHttpClient,
        url: str,
        params: dict,
        *,
        prefix: str = "",
    ) -> AsyncIterator[list]:
        """Yield ``value`` arrays until a short page signals the end."""
        top = self.page_size
        skip = 0
        while True:
            query = {
                **params,
                "api-version": self.settings.azure_api_version,
                f"{prefix}$top": top,
                f"{prefix}$skip": skip,
            }
            body = await http.get_json(url, query)
            values = body.get("value") or []
            yield values
            if len(values) < top:
                return
            skip += top
