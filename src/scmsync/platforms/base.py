"""Platform fetch strategy contract and shared normalization helpers."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

import httpx

from scmsync.config import Settings, settings as default_settings
from scmsync.errors.exceptions import PlatformApiError, PlatformAuthenticationError
from scmsync.models.enums import FileChangeType, GitPlatform, MergeRequestState
from scmsync.models.records import CommitRecord, MergeRequestRecord, RepositoryRecord
from scmsync.models.scan import Credential
from scmsync.platforms.http import PlatformHttpClient
from scmsync.platforms.pickup import pickup_latency_ms
from scmsync.ratelimit.coordinator import RateLimitCoordinator
from scmsync.scanning.url_parser import GitUrlInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Raw platform state -> normalized state
_STATE_MAP: dict[str, MergeRequestState] = {
    "open": MergeRequestState.OPEN,
    "opened": MergeRequestState.OPEN,
    "active": MergeRequestState.OPEN,
    "locked": MergeRequestState.OPEN,
    "merged": MergeRequestState.MERGED,
    "completed": MergeRequestState.MERGED,
    "closed": MergeRequestState.CLOSED,
    "declined": MergeRequestState.CLOSED,
    "superseded": MergeRequestState.CLOSED,
    "abandoned": MergeRequestState.CLOSED,
}

_CHANGE_TYPE_MAP: dict[str, FileChangeType] = {
    "added": FileChangeType.ADDED,
    "add": FileChangeType.ADDED,
    "new": FileChangeType.ADDED,
    "removed": FileChangeType.DELETED,
    "deleted": FileChangeType.DELETED,
    "delete": FileChangeType.DELETED,
    "renamed": FileChangeType.RENAMED,
    "rename": FileChangeType.RENAMED,
    "moved": FileChangeType.RENAMED,
}

BINARY_EXTENSIONS = frozenset({
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".svg", ".webp",
    ".pdf", ".zip", ".tar", ".gz", ".tgz", ".7z", ".rar", ".jar", ".war",
    ".exe", ".dll", ".so", ".dylib", ".bin", ".class", ".pyc",
    ".woff", ".woff2", ".ttf", ".eot", ".mp3", ".mp4", ".mov", ".avi",
})


def normalize_state(raw: str | None, merged: bool = False) -> MergeRequestState | None:
    """Map a platform state string to OPEN/CLOSED/MERGED.

    ``merged`` upgrades a closed state (GitHub reports merged PRs as closed).
    """
    if not raw:
        return None
    state = _STATE_MAP.get(raw.strip().lower())
    if state == MergeRequestState.CLOSED and merged:
        return MergeRequestState.MERGED
    return state


def normalize_change_type(raw: str | None) -> FileChangeType:
    if not raw:
        return FileChangeType.MODIFIED
    return _CHANGE_TYPE_MAP.get(raw.strip().lower(), FileChangeType.MODIFIED)


def is_binary_path(path: str | None) -> bool:
    if not path or "." not in path:
        return False
    return "." + path.rsplit(".", 1)[1].lower() in BINARY_EXTENSIONS


def before_window(timestamp: datetime | None, since: datetime | None) -> bool:
    return timestamp is not None and since is not None and timestamp < since


def after_window(timestamp: datetime | None, until: datetime | None) -> bool:
    return timestamp is not None and until is not None and timestamp > until


class PlatformFetchStrategy(ABC):
    """Abstract base for one platform's REST fetch logic.

    Subclasses implement the streaming ``iter_*`` generators; the list-returning
    ``fetch_*`` variants collect them. Fetchers consume the streams so records
    from pages that succeeded survive a failure on a later page.
    """

    platform: GitPlatform

    def __init__(
        self,
        settings: Settings | None = None,
        coordinator: RateLimitCoordinator | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or default_settings
        self.coordinator = coordinator or RateLimitCoordinator(self.settings)
        self._transport = transport
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_repositories(
        self,
        repo: GitUrlInfo,
        credential: Credential,
        since: datetime | None = None,
    ) -> list[RepositoryRecord]:
        """List repositories in the owner/organization/workspace of ``repo``."""
        ...

    @abstractmethod
    def iter_commits(
        self,
        repo: GitUrlInfo,
        branch: str | None,
        credential: Credential,
        since: datetime | None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[CommitRecord]:
        """Yield commits on ``branch`` within ``[since, until]``, newest first."""
        ...

    @abstractmethod
    def iter_merge_requests(
        self,
        repo: GitUrlInfo,
        branch: str | None,
        credential: Credential,
        since: datetime | None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[MergeRequestRecord]:
        """Yield merge requests targeting ``branch`` updated within the window."""
        ...

    async def fetch_commits(
        self,
        repo: GitUrlInfo,
        branch: str | None,
        credential: Credential,
        since: datetime | None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[CommitRecord]:
        return [c async for c in self.iter_commits(repo, branch, credential, since, until, limit)]

    async def fetch_merge_requests(
        self,
        repo: GitUrlInfo,
        branch: str | None,
        credential: Credential,
        since: datetime | None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[MergeRequestRecord]:
        return [m async for m in self.iter_merge_requests(repo, branch, credential, since, until, limit)]

    # ------------------------------------------------------------------
    # Optional per-record enrichment, run inside an open client
    # ------------------------------------------------------------------

    async def fetch_commit_diff_stats(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: CommitRecord,
    ) -> None:
        """Fill line and per-file statistics on ``record``; platforms without them leave it unset."""

    async def fetch_merge_request_changes(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: MergeRequestRecord,
    ) -> None:
        """Fill line, file, commit and comment counts on ``record``."""

    async def fetch_review_pickup_timestamp(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: MergeRequestRecord,
    ) -> datetime | None:
        """When someone other than the author first acted on the merge request."""
        return None

    async def enrich_merge_request(
        self, http: PlatformHttpClient, repo: GitUrlInfo, record: MergeRequestRecord,
    ) -> None:
        await self.fetch_merge_request_changes(http, repo, record)
        picked = await self.fetch_review_pickup_timestamp(http, repo, record)
        record.picked_for_review_at = picked
        record.review_pickup_ms = pickup_latency_ms(record.created_on, picked)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @abstractmethod
    def auth_for(self, credential: Credential) -> tuple[dict[str, str], httpx.Auth | tuple[str, str] | None]:
        """Return (headers, httpx auth) for a credential."""
        ...

    @abstractmethod
    def api_base_url(self, repo: GitUrlInfo) -> str:
        ...

    def client(self, repo: GitUrlInfo, credential: Credential) -> PlatformHttpClient:
        headers, auth = self.auth_for(credential)
        return PlatformHttpClient(
            self.platform,
            self.api_base_url(repo),
            coordinator=self.coordinator,
            settings=self.settings,
            credential_secret=credential.secret,
            headers=headers,
            auth=auth,
            repository_path=repo.full_name,
            transport=self._transport,
            sleep=self._sleep,
        )

    @property
    def page_size(self) -> int:
        return self.settings.page_size

    async def guarded(self, description: str, call: Callable[[], Awaitable[T]], default: T) -> T:
        """Run a per-record secondary call; log and fall back to ``default`` on failure.

        Credential rejections still propagate so a revoked token fails the scan.
        """
        try:
            return await call()
        except PlatformAuthenticationError:
            raise
        except (PlatformApiError, KeyError, TypeError, ValueError) as exc:
            logger.warning("%s: %s failed, keeping record with defaults: %s", self.platform, description, exc)
            return default


def dig(payload: Any, *path: str, default: Any = None) -> Any:
    """Safe nested lookup: ``dig(pr, "head", "ref")``."""
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return default
        current = current.get(key)
        if current is None:
            return default
    return current
