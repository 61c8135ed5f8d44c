"""Incremental fetchers: decide the time window, stream from the strategy, cap and dedup.

Window start precedence: explicit ``since`` on the request, then the caller's
``last_scan_from`` epoch, then the last successful scan recorded in the trace
log, then ``now - first_scan_lookback_days``.

When a page fails after earlier pages succeeded the fetcher keeps what it has
(graceful truncation). Credential and not-found errors always propagate. A
truncated or capped fetch is noted on the scope so the scan holds its watermark
and the next scan covers the same window again.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scmsync.config import Settings, settings as default_settings
from scmsync.errors.exceptions import PlatformApiError, PlatformAuthenticationError, RepositoryNotFoundError
from scmsync.models.records import CommitRecord, MergeRequestRecord, RepositoryRecord
from scmsync.models.scan import ScanRequest
from scmsync.platforms.base import PlatformFetchStrategy
from scmsync.repositories.trace_log_repo import ScanTraceLogRepository
from scmsync.scanning.selector import StrategySelector
from scmsync.scanning.url_parser import GitUrlInfo, parse_git_url
from scmsync.services.timeutil import ensure_utc, from_epoch_millis, utcnow

logger = logging.getLogger(__name__)

R = TypeVar("R", CommitRecord, MergeRequestRecord)


def resolve_since(
    request: ScanRequest,
    last_success_at: datetime | None,
    lookback_days: int,
    now: datetime | None = None,
) -> datetime:
    """Start of the fetch window for a scan."""
    if request.since is not None:
        return ensure_utc(request.since)
    if request.last_scan_from:
        return from_epoch_millis(request.last_scan_from)
    if last_success_at is not None:
        return ensure_utc(last_success_at)
    return (now or utcnow()) - timedelta(days=lookback_days)


@dataclass(frozen=True)
class ScanScope:
    """Everything a fetch needs, derived once per scan."""

    request: ScanRequest
    repo: GitUrlInfo
    strategy: PlatformFetchStrategy
    since: datetime
    until: datetime | None
    truncated: set[str] = field(default_factory=set)

    @property
    def scope_id(self) -> str:
        return self.request.scope_id


class BaseFetcher:
    """Shared window resolution and stream draining."""

    kind: str = "records"

    def __init__(
        self,
        selector: StrategySelector,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ):
        self.selector = selector
        self.session_factory = session_factory
        self.settings = settings or default_settings

    async def prepare(self, request: ScanRequest) -> ScanScope:
        """Parse the URL, select the strategy and resolve the window.

        Raises:
            ConfigurationError: unparseable URL or unknown tool type.
        """
        repo = parse_git_url(
            request.repository_url,
            request.tool_type,
            request.repository_name,
            request.credential.username,
        )
        strategy = self.selector.select(repo, request.clone_enabled)

        last_success_at = None
        if request.since is None and not request.last_scan_from:
            async with self.session_factory() as session:
                trace = await ScanTraceLogRepository(session).get(request.scope_id)
                last_success_at = trace.last_success_at if trace else None

        since = resolve_since(request, last_success_at, self.settings.first_scan_lookback_days)
        until = ensure_utc(request.until) if request.until else None
        logger.debug("Fetch window for %s: since=%s until=%s", repo.full_name, since, until)
        return ScanScope(request=request, repo=repo, strategy=strategy, since=since, until=until)

    async def drain(
        self,
        scope: ScanScope,
        stream: AsyncIterator[R],
        key: Callable[[R], str],
        cap: int | None = None,
    ) -> list[R]:
        """Collect a record stream: stamp scope, dedup by natural key, cap, truncate on failure."""
        records: list[R] = []
        seen: set[str] = set()
        try:
            async with aclosing(stream) as items:
                async for record in items:
                    natural_key = key(record)
                    if natural_key in seen:
                        continue
                    seen.add(natural_key)
                    record.scope_id = scope.scope_id
                    if not record.repository_name:
                        record.repository_name = scope.repo.full_name
                    records.append(record)
                    if cap and len(records) >= cap:
                        logger.info(
                            "Reached cap of %d %s for %s; the watermark will not advance past this window",
                            cap, self.kind, scope.repo.full_name,
                        )
                        scope.truncated.add(self.kind)
                        break
        except (PlatformAuthenticationError, RepositoryNotFoundError):
            raise
        except (PlatformApiError, KeyError, TypeError, ValueError) as exc:
            if not records:
                raise
            logger.warning(
                "Fetching %s for %s stopped after %d records; keeping partial results: %s",
                self.kind, scope.repo.full_name, len(records), exc,
            )
            scope.truncated.add(self.kind)
        return records


class RepositoryFetcher(BaseFetcher):
    kind = "repositories"

    async def fetch_repositories(self, request: ScanRequest, scope: ScanScope | None = None) -> list[RepositoryRecord]:
        scope = scope or await self.prepare(request)
        fetched = await scope.strategy.fetch_repositories(scope.repo, request.credential, scope.since)
        for record in fetched:
            record.scope_id = scope.scope_id
        return fetched


class CommitFetcher(BaseFetcher):
    kind = "commits"

    async def fetch_commits(self, request: ScanRequest, scope: ScanScope | None = None) -> list[CommitRecord]:
        scope = scope or await self.prepare(request)
        cap = self.settings.max_commits_per_scan
        stream = scope.strategy.iter_commits(
            scope.repo, request.branch, request.credential, scope.since, scope.until, cap,
        )
        commits = await self.drain(scope, stream, key=lambda c: c.sha, cap=cap)
        logger.info("Fetched %d commits for %s since %s", len(commits), scope.repo.full_name, scope.since)
        return commits


class MergeRequestFetcher(BaseFetcher):
    kind = "merge requests"

    async def fetch_merge_requests(
        self, request: ScanRequest, scope: ScanScope | None = None,
    ) -> list[MergeRequestRecord]:
        scope = scope or await self.prepare(request)
        cap = self.settings.max_merge_requests_per_scan
        stream = scope.strategy.iter_merge_requests(
            scope.repo, request.branch, request.credential, scope.since, scope.until, cap,
        )
        merge_requests = await self.drain(scope, stream, key=lambda m: m.external_id, cap=cap)
        logger.info(
            "Fetched %d merge requests for %s since %s",
            len(merge_requests), scope.repo.full_name, scope.since,
        )
        return merge_requests
