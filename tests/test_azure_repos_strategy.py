"""Tests for the Azure Repos fetch strategy against a mocked REST API."""

import base64
from datetime import datetime, timezone

import httpx
import pytest

from scmsync.models.enums import FileChangeType, MergeRequestState
from scmsync.models.scan import Credential
from scmsync.platforms.azure_repos import AzureReposStrategy, strip_ref
from scmsync.scanning.url_parser import parse_git_url

SINCE = datetime(2026, 3, 1, tzinfo=timezone.utc)
REPO = parse_git_url("https://dev.azure.com/contoso/Fabrikam/_git/web")
CREDENTIAL = Credential(token="azure-pat")
BASE = "/contoso/Fabrikam/_apis/git/repositories/web"


def _commit(sha: str, when: str) -> dict:
    return {
        "commitId": sha,
        "comment": f"change {sha}",
        "author": {"name": "Alice", "email": "alice@contoso.com", "date": when},
        "committer": {"name": "Alice", "email": "alice@contoso.com", "date": when},
        "changeCounts": {"Add": 1, "Edit": 1},
        "remoteUrl": f"https://dev.azure.com/contoso/Fabrikam/_git/web/commit/{sha}",
    }


def _pull(pr_id: int, status: str, created: str, closed: str | None = None) -> dict:
    return {
        "pullRequestId": pr_id,
        "title": f"PR {pr_id}",
        "status": status,
        "createdBy": {"uniqueName": "alice@contoso.com", "displayName": "Alice"},
        "reviewers": [{"uniqueName": "bob@contoso.com"}],
        "sourceRefName": f"refs/heads/feature/{pr_id}",
        "targetRefName": "refs/heads/main",
        "creationDate": created,
        "closedDate": closed,
        "isDraft": False,
    }


def azure_api(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    params = request.url.params
    if path == f"{BASE}/commits":
        if params.get("searchCriteria.$skip") == "2":
            return httpx.Response(200, json={"value": [_commit("a3", "2026-03-02T08:00:00Z")]})
        return httpx.Response(200, json={"value": [
            _commit("a1", "2026-03-04T08:00:00Z"),
            _commit("a2", "2026-03-03T08:00:00Z"),
        ]})
    if path.startswith(f"{BASE}/commits/") and path.endswith("/changes"):
        return httpx.Response(200, json={"changes": [
            {"item": {"path": "/src/app.cs"}, "changeType": "edit"},
            {"item": {"path": "/src", "isFolder": True}, "changeType": "edit"},
            {"item": {"path": "/img/logo.png"}, "changeType": "add"},
        ]})
    if path == f"{BASE}/pullrequests":
        if params.get("$skip") != "0":
            return httpx.Response(200, json={"value": []})
        return httpx.Response(200, json={"value": [
            _pull(1, "completed", "2026-03-02T09:00:00Z", "2026-03-03T09:00:00Z"),
            _pull(2, "active", "2026-02-01T09:00:00Z"),
            _pull(3, "active", "2026-03-02T12:00:00Z"),
            _pull(4, "active", "2026-02-10T09:00:00Z"),
        ]})
    if path == f"{BASE}/pullrequests/1/commits":
        return httpx.Response(200, json={"value": [{"commitId": "x"}, {"commitId": "y"}, {"commitId": "z"}]})
    if path == f"{BASE}/pullrequests/1/threads":
        return httpx.Response(200, json={"value": [
            {"comments": [
                {"author": {"uniqueName": "tfs-system"}, "commentType": "system",
                 "content": "Alice updated the pull request status", "publishedDate": "2026-03-02T09:01:00Z"},
                {"author": {"uniqueName": "bob@contoso.com"}, "commentType": "text",
                 "content": "Looks fine to me", "publishedDate": "2026-03-02T09:15:00Z"},
            ]},
        ]})
    if path == f"{BASE}/pullrequests/3/threads":
        return httpx.Response(200, json={"value": []})
    if path == f"{BASE}/pullrequests/4/threads":
        return httpx.Response(200, json={"value": [
            {"lastUpdatedDate": "2026-03-05T10:30:00Z", "comments": [
                {"author": {"uniqueName": "bob.com"}, "commentType": "text",
                 "content": "Rebased, please look again", "publishedDate": "2026-03-05T10:30:00Z"},
            ]},
        ]})
    return httpx.Response(404)


@pytest.fixture
def strategy(settings):
    return AzureReposStrategy(settings, transport=httpx.MockTransport(azure_api))


def test_strip_ref():
    assert strip_ref("refs/heads/main") == "main"
    assert strip_ref("main") == "main"
    assert strip_ref(None) is None


def test_api_base_url(strategy):
    assert strategy.api_base_url(REPO) == "https://dev.azure.com/contoso/Fabrikam/_apis/git"


class TestAzureCommits:
    async def test_skip_top_pagination(self, strategy):
        commits = await strategy.fetch_commits(REPO, "main", CREDENTIAL, SINCE)
        assert [c.sha for c in commits] == ["a1", "a2", "a3"]

    async def test_change_list_skips_folders(self, strategy):
        commits = await strategy.fetch_commits(REPO, "main", CREDENTIAL, SINCE)
        first = commits[0]
        assert first.files_changed == 2
        assert [fc.path for fc in first.file_changes] == ["/src/app.cs", "/img/logo.png"]
        assert first.file_changes[1].change_type == FileChangeType.ADDED
        assert first.file_changes[1].is_binary
        # Line counts are not available from the changes endpoint
        assert first.added_lines is None

    async def test_search_criteria_and_pat_auth(self, settings):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"value": []})

        strategy = AzureReposStrategy(settings, transport=httpx.MockTransport(handler))
        await strategy.fetch_commits(REPO, "main", CREDENTIAL, SINCE)

        params = seen[0].url.params
        assert params["searchCriteria.itemVersion.version"] == "main"
        assert params["searchCriteria.fromDate"] == "2026-03-01T00:00:00Z"
        assert params["searchCriteria.$top"] == "2"
        assert params["api-version"] == settings.azure_api_version
        expected = base64.b64encode(b":azure-pat").decode()
        assert seen[0].headers["Authorization"] == f"Basic {expected}"


class TestAzurePullRequests:
    async def test_filters_by_activity_without_stopping(self, strategy):
        prs = await strategy.fetch_merge_requests(REPO, "main", CREDENTIAL, SINCE)
        assert [pr.external_id for pr in prs] == ["1", "3", "4"]

    async def test_completed_pull_request(self, strategy):
        prs = await strategy.fetch_merge_requests(REPO, "main", CREDENTIAL, SINCE)
        completed = prs[0]
        assert completed.state == MergeRequestState.MERGED
        assert completed.merged_at == datetime(2026, 3, 3, 9, tzinfo=timezone.utc)
        assert completed.target_branch == "main"
        assert completed.author_email == "alice@contoso.com"
        assert completed.reviewers == ["bob@contoso.com"]
        assert completed.commit_count == 3
        assert completed.comment_count == 1

    async def test_pickup_ignores_system_threads(self, strategy):
        prs = await strategy.fetch_merge_requests(REPO, "main", CREDENTIAL, SINCE)
        assert prs[0].picked_for_review_at == datetime(2026, 3, 2, 9, 15, tzinfo=timezone.utc)
        assert prs[0].review_pickup_ms == 15 * 60 * 1000

    async def test_missing_commit_list_keeps_pull_request(self, strategy):
        prs = await strategy.fetch_merge_requests(REPO, "main", CREDENTIAL, SINCE)
        active = prs[1]
        assert active.state == MergeRequestState.OPEN
        assert active.commit_count is None
        assert active.comment_count == 0

    async def test_old_open_pull_request_with_recent_thread(self, strategy):
        prs = await strategy.fetch_merge_requests(REPO, "main", CREDENTIAL, SINCE)
        revived = next(pr for pr in prs if pr.external_id == "4")
        assert revived.state == MergeRequestState.OPEN
        assert revived.created_on == datetime(2026, 2, 10, 9, tzinfo=timezone.utc)
        assert revived.updated_on == datetime(2026, 3, 5, 10, 30, tzinfo=timezone.utc)
        assert revived.comment_count == 1
