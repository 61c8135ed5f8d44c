"""Tests for the Bitbucket Server / Data Center fetch strategy against a mocked REST 1.0 API."""

from datetime import datetime, timezone

import httpx
import pytest

from scmsync.models.enums import FileChangeType, MergeRequestState
from scmsync.models.scan import Credential
from scmsync.platforms.bitbucket import BitbucketStrategy
from scmsync.platforms.bitbucket_server import BitbucketServerStrategy, diff_file_changes
from scmsync.scanning.selector import StrategySelector
from scmsync.scanning.url_parser import parse_git_url

SINCE = datetime(2026, 3, 1, tzinfo=timezone.utc)
REPO = parse_git_url("https://git.acme.io/bitbucket/scm/PAY/ledger.git", "bitbucket")
CREDENTIAL = Credential(username="svc-bot", password="s3cret")
BASE = "/bitbucket/rest/api/1.0/projects/PAY/repos/ledger"

ALICE = {"name": "alice", "displayName": "Alice Doe", "emailAddress": "alice@acme.io"}
BOB = {"name": "bob", "displayName": "Bob Roe", "emailAddress": "bob@acme.io"}

DIFF = {"diffs": [
    {
        "source": {"toString": "src/ledger.py"},
        "destination": {"toString": "src/ledger.py"},
        "hunks": [{"segments": [
            {"type": "CONTEXT", "lines": [{}, {}, {}]},
            {"type": "REMOVED", "lines": [{"source": 4}]},
            {"type": "ADDED", "lines": [{"destination": 4}, {"destination": 5}]},
        ]}],
    },
    {
        "source": None,
        "destination": {"toString": "src/audit.py"},
        "hunks": [{"segments": [{"type": "ADDED", "lines": [{}, {}, {}, {}]}]}],
    },
]}


def _commit(sha: str, millis: int) -> dict:
    return {
        "id": sha,
        "displayId": sha[:7],
        "message": f"change {sha}",
        "author": ALICE,
        "authorTimestamp": millis,
        "committer": ALICE,
        "committerTimestamp": millis,
        "parents": [{"id": "p1"}],
    }


def _pull(pr_id: int, state: str, created: int, updated: int, closed: int | None = None) -> dict:
    return {
        "id": pr_id,
        "title": f"PR {pr_id}",
        "state": state,
        "author": {"user": ALICE, "role": "AUTHOR"},
        "reviewers": [{"user": BOB, "role": "REVIEWER", "approved": True}],
        "fromRef": {"displayId": f"feature/{pr_id}"},
        "toRef": {"displayId": "main"},
        "createdDate": created,
        "updatedDate": updated,
        "closedDate": closed,
        "properties": {"commentCount": 1, "mergeCommit": {"id": f"m{pr_id}"}},
        "links": {"self": [{"href": f"https://git.acme.io/bitbucket/projects/PAY/repos/ledger/pull-requests/{pr_id}"}]},
    }


def server_api(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    start = request.url.params.get("start", "0")
    if path == f"{BASE}/commits":
        if start == "2":
            return httpx.Response(200, json={
                "values": [_commit("c3", 1772438400000), _commit("c4", 1772179200000)],
                "isLastPage": True,
            })
        return httpx.Response(200, json={
            "values": [_commit("c1", 1772611200000), _commit("c2", 1772524800000)],
            "isLastPage": False,
            "nextPageStart": 2,
        })
    if path.startswith(f"{BASE}/commits/") and path.endswith("/diff"):
        return httpx.Response(200, json=DIFF)
    if path == f"{BASE}/pull-requests":
        return httpx.Response(200, json={
            "values": [
                _pull(7, "MERGED", 1772445600000, 1772532000000, 1772532000000),
                _pull(5, "DECLINED", 1767607200000, 1767693600000, 1767693600000),
            ],
            "isLastPage": True,
        })
    if path == f"{BASE}/pull-requests/7/diff":
        return httpx.Response(200, json=DIFF)
    if path == f"{BASE}/pull-requests/7/commits":
        return httpx.Response(200, json={"values": [{"id": "x"}, {"id": "y"}, {"id": "z"}], "isLastPage": True})
    if path == f"{BASE}/pull-requests/7/activities":
        return httpx.Response(200, json={"values": [
            {"action": "COMMENTED", "user": ALICE, "createdDate": 1772445720000, "comment": {"text": "Ready for review"}},
            {"action": "COMMENTED", "user": BOB, "createdDate": 1772445720000, "comment": {"text": "no"}},
            {"action": "APPROVED", "user": BOB, "createdDate": 1772447400000},
            {"action": "OPENED", "user": ALICE, "createdDate": 1772445600000},
        ], "isLastPage": True})
    return httpx.Response(404)


@pytest.fixture
def strategy(settings):
    return BitbucketServerStrategy(settings, transport=httpx.MockTransport(server_api))


def test_api_base_keeps_context_path(strategy):
    assert strategy.api_base_url(REPO) == "https://git.acme.io/bitbucket/rest/api/1.0"


def test_selector_routes_scm_urls_to_server(settings):
    selector = StrategySelector(settings, transport=httpx.MockTransport(server_api))
    cloud = parse_git_url("https://bitbucket.org/acme-ws/widgets", "bitbucket")

    assert isinstance(selector.select(REPO), BitbucketServerStrategy)
    assert isinstance(selector.select(cloud), BitbucketStrategy)


def test_diff_file_changes_counts_segments():
    changes = diff_file_changes(DIFF)
    assert [(c.path, c.change_type) for c in changes] == [
        ("src/ledger.py", FileChangeType.MODIFIED),
        ("src/audit.py", FileChangeType.ADDED),
    ]
    assert [(c.added_lines, c.removed_lines) for c in changes] == [(2, 1), (4, 0)]


class TestServerCommits:
    async def test_pages_by_next_page_start_and_stops_at_window(self, settings):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return server_api(request)

        strategy = BitbucketServerStrategy(settings, transport=httpx.MockTransport(handler))
        commits = await strategy.fetch_commits(REPO, "main", CREDENTIAL, SINCE)

        assert [c.sha for c in commits] == ["c1", "c2", "c3"]
        listing = [r for r in seen if r.url.path == f"{BASE}/commits"]
        assert [r.url.params["start"] for r in listing] == ["0", "2"]
        assert listing[0].url.params["until"] == "refs/heads/main"

    async def test_author_and_line_counts(self, strategy):
        commits = await strategy.fetch_commits(REPO, "main", CREDENTIAL, SINCE)
        first = commits[0]
        assert first.author_username == "alice"
        assert first.author_email == "alice@acme.io"
        assert first.committed_at == datetime(2026, 3, 4, 8, tzinfo=timezone.utc)
        assert (first.added_lines, first.removed_lines, first.files_changed) == (6, 1, 2)
        assert first.repository_name == "PAY/ledger"

    async def test_bearer_token_without_username(self, settings):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"values": [], "isLastPage": True})

        strategy = BitbucketServerStrategy(settings, transport=httpx.MockTransport(handler))
        await strategy.fetch_commits(REPO, "main", Credential(token="http-access-token"), SINCE)

        assert seen[0].headers["Authorization"] == "Bearer http-access-token"


class TestServerPullRequests:
    async def test_window_filter_and_state(self, strategy):
        prs = await strategy.fetch_merge_requests(REPO, "main", CREDENTIAL, SINCE)

        assert [pr.external_id for pr in prs] == ["7"]
        pr = prs[0]
        assert pr.state == MergeRequestState.MERGED
        assert pr.merged_at == datetime(2026, 3, 3, 10, tzinfo=timezone.utc)
        assert pr.closed_at == pr.merged_at
        assert pr.merge_commit_sha == "m7"
        assert (pr.source_branch, pr.target_branch) == ("feature/7", "main")
        assert pr.reviewers == ["bob"]

    async def test_enrichment_and_pickup(self, strategy):
        pr = (await strategy.fetch_merge_requests(REPO, "main", CREDENTIAL, SINCE))[0]

        assert (pr.added_lines, pr.removed_lines, pr.files_changed) == (6, 1, 2)
        assert pr.commit_count == 3
        assert pr.comment_count == 1
        # The author's comment and the two-letter reply do not count as pickup
        assert pr.picked_for_review_at == datetime(2026, 3, 2, 10, 30, tzinfo=timezone.utc)
        assert pr.review_pickup_ms == 30 * 60 * 1000
