"""Tests for incremental fetchers: window resolution, caps, dedup and graceful truncation."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from scmsync.errors.exceptions import PlatformAuthenticationError, TransientPlatformError
from scmsync.models.enums import GitPlatform
from scmsync.models.records import CommitRecord
from scmsync.models.scan import Credential, ScanRequest
from scmsync.platforms.github import GitHubStrategy
from scmsync.repositories.trace_log_repo import ScanTraceLogRepository
from scmsync.scanning.fetchers import CommitFetcher, resolve_since
from scmsync.scanning.selector import StrategySelector
from scmsync.services.timeutil import to_epoch_millis

NOW = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)


def _request(**overrides) -> ScanRequest:
    values = {
        "scope_id": "conn_api",
        "repository_url": "https://github.com/octo/app",
        "branch": "main",
        "tool_type": "github",
        "credential": Credential(token="ghp_test"),
    }
    values.update(overrides)
    return ScanRequest(**values)


def _commit(sha: str) -> CommitRecord:
    return CommitRecord(sha=sha, author_username="alice", committed_at=NOW)


# ---------------------------------------------------------------------------
# Window resolution
# ---------------------------------------------------------------------------


class TestResolveSince:
    def test_explicit_since_wins(self):
        since = datetime(2026, 1, 5, tzinfo=timezone.utc)
        request = _request(since=since, last_scan_from=to_epoch_millis(NOW))
        assert resolve_since(request, NOW, 180, now=NOW) == since

    def test_last_scan_from_beats_trace_log(self):
        marker = datetime(2026, 2, 1, tzinfo=timezone.utc)
        request = _request(last_scan_from=to_epoch_millis(marker))
        assert resolve_since(request, NOW - timedelta(days=1), 180, now=NOW) == marker

    def test_trace_log_watermark(self):
        watermark = datetime(2026, 3, 9, 6, tzinfo=timezone.utc)
        assert resolve_since(_request(), watermark, 180, now=NOW) == watermark

    def test_naive_watermark_is_treated_as_utc(self):
        assert resolve_since(_request(), datetime(2026, 3, 9, 6), 180, now=NOW) == datetime(
            2026, 3, 9, 6, tzinfo=timezone.utc,
        )

    def test_first_scan_uses_lookback(self):
        assert resolve_since(_request(), None, 180, now=NOW) == NOW - timedelta(days=180)


class TestPrepare:
    async def test_window_starts_at_last_successful_scan(self, selector, session_factory, settings, db_session):
        started = datetime(2026, 3, 8, 7, 30, tzinfo=timezone.utc)
        await ScanTraceLogRepository(db_session).record_attempt("conn_api", started_at=started, success=True)
        await db_session.commit()

        scope = await CommitFetcher(selector, session_factory, settings).prepare(_request())

        assert scope.since == started
        assert scope.repo.full_name == "octo/app"

    async def test_failed_attempt_does_not_move_window(self, selector, session_factory, settings, db_session):
        repo = ScanTraceLogRepository(db_session)
        good = datetime(2026, 3, 1, tzinfo=timezone.utc)
        await repo.record_attempt("conn_api", started_at=good, success=True)
        await repo.record_attempt("conn_api", started_at=good + timedelta(days=2), success=False, error="boom")
        await db_session.commit()

        scope = await CommitFetcher(selector, session_factory, settings).prepare(_request())

        assert scope.since == good


# ---------------------------------------------------------------------------
# Draining
# ---------------------------------------------------------------------------


class TestDrain:
    async def test_stamps_scope_and_dedups(self, selector, session_factory, settings, fake_strategy):
        fake_strategy.commits = [_commit("a1"), _commit("a2"), _commit("a1")]

        fetcher = CommitFetcher(selector, session_factory, settings)
        scope = await fetcher.prepare(_request())
        commits = await fetcher.fetch_commits(scope.request, scope)

        assert [c.sha for c in commits] == ["a1", "a2"]
        assert all(c.scope_id == "conn_api" for c in commits)
        assert all(c.repository_name == "octo/app" for c in commits)
        assert scope.truncated == set()

    async def test_cap_limits_commits(self, selector, session_factory, settings, fake_strategy):
        settings.max_commits_per_scan = 3
        fake_strategy.commits = [_commit(f"c{i}") for i in range(5)]

        fetcher = CommitFetcher(selector, session_factory, settings)
        scope = await fetcher.prepare(_request())
        commits = await fetcher.fetch_commits(scope.request, scope)

        assert len(commits) == 3
        assert scope.truncated == {"commits"}

    async def test_mid_stream_failure_keeps_collected_records(self, selector, session_factory, settings, fake_strategy):
        fake_strategy.commits = [_commit("a1"), _commit("a2"), _commit("a3")]
        fake_strategy.fail_commits_after = 2
        fake_strategy.commit_error = TransientPlatformError("github", "Server error 502")

        fetcher = CommitFetcher(selector, session_factory, settings)
        scope = await fetcher.prepare(_request())
        commits = await fetcher.fetch_commits(scope.request, scope)

        assert [c.sha for c in commits] == ["a1", "a2"]
        assert scope.truncated == {"commits"}

    async def test_failure_before_any_record_propagates(self, selector, session_factory, settings, fake_strategy):
        fake_strategy.commits = [_commit("a1")]
        fake_strategy.fail_commits_after = 0
        fake_strategy.commit_error = TransientPlatformError("github", "Server error 502")

        with pytest.raises(TransientPlatformError):
            await CommitFetcher(selector, session_factory, settings).fetch_commits(_request())

    async def test_authentication_failure_always_propagates(self, selector, session_factory, settings, fake_strategy):
        fake_strategy.commits = [_commit("a1"), _commit("a2")]
        fake_strategy.fail_commits_after = 1
        fake_strategy.commit_error = PlatformAuthenticationError("github", "token revoked", 401)

        with pytest.raises(PlatformAuthenticationError):
            await CommitFetcher(selector, session_factory, settings).fetch_commits(_request())

    async def test_strategy_receives_resolved_window(self, selector, session_factory, settings, fake_strategy):
        since = datetime(2026, 2, 14, tzinfo=timezone.utc)
        await CommitFetcher(selector, session_factory, settings).fetch_commits(_request(since=since))
        assert fake_strategy.calls == [("commits", since)]


async def test_page_three_failure_truncates_gracefully(session_factory, settings):
    """Pages one and two succeed, page three keeps failing: four commits survive."""

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/repos/octo/app/commits":
            page = int(request.url.params.get("page", "1"))
            if page == 3:
                return httpx.Response(503)
            return httpx.Response(
                200,
                json=[
                    {"sha": f"p{page}c{i}", "commit": {"committer": {"date": "2026-03-05T00:00:00Z"}}}
                    for i in range(2)
                ],
                headers={"Link": f'<https://api.github.com/repos/octo/app/commits?page={page + 1}>; rel="next"'},
            )
        return httpx.Response(200, json={"stats": {"additions": 1, "deletions": 0, "total": 1}, "files": []})

    strategy = GitHubStrategy(settings, transport=httpx.MockTransport(handler))
    github_selector = StrategySelector(settings, strategies={GitPlatform.GITHUB: strategy})

    commits = await CommitFetcher(github_selector, session_factory, settings).fetch_commits(_request())

    assert [c.sha for c in commits] == ["p1c0", "p1c1", "p2c0", "p2c1"]
