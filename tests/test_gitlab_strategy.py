"""Tests for the GitLab fetch strategy against a mocked REST API."""

from datetime import datetime, timezone

import httpx
import pytest

from scmsync.models.enums import FileChangeType, MergeRequestState
from scmsync.models.scan import Credential
from scmsync.platforms.gitlab import GitLabStrategy, count_diff_lines
from scmsync.scanning.url_parser import parse_git_url

SINCE = datetime(2026, 3, 1, tzinfo=timezone.utc)
REPO = parse_git_url("https://gitlab.com/acme/platform/api")
CREDENTIAL = Credential(token="glpat-test")
PROJECT = "/api/v4/projects/acme/platform/api"

DIFF = "--- a/app.py\n+++ b/app.py\n@@ -1,2 +1,3 @@\n-old\n+new\n+more\n"


def _commit(sha: str, email: str, when: str) -> dict:
    return {
        "id": sha,
        "title": f"change {sha}",
        "message": f"change {sha}\n\nbody",
        "author_name": "Alice",
        "author_email": email,
        "committer_name": "Alice",
        "committer_email": email,
        "authored_date": when,
        "committed_date": when,
        "parent_ids": ["p1"],
        "stats": {"additions": 2, "deletions": 1, "total": 3},
        "web_url": f"https://gitlab.com/acme/platform/api/-/commit/{sha}",
    }


def gitlab_api(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == f"{PROJECT}/repository/commits":
        if request.url.params.get("page") == "2":
            return httpx.Response(200, json=[_commit("g3", "alice@example.com", "2026-03-02T08:00:00.123456789Z")])
        return httpx.Response(
            200,
            json=[
                _commit("g1", "alice@example.com", "2026-03-04T08:00:00Z"),
                _commit("g2", "alice@example.com", "2026-03-03T08:00:00+02:00"),
            ],
            headers={"X-Next-Page": "2"},
        )
    if path.startswith(f"{PROJECT}/repository/commits/") and path.endswith("/diff"):
        return httpx.Response(200, json=[
            {"old_path": "app.py", "new_path": "app.py", "diff": DIFF},
            {"old_path": "a.txt", "new_path": "b.txt", "renamed_file": True, "diff": ""},
            {"old_path": "img.bin", "new_path": "img.bin", "diff": "Binary files differ"},
        ])
    if path == f"{PROJECT}/merge_requests":
        return httpx.Response(200, json=[
            {
                "id": 501, "iid": 7, "title": "Add ledger", "state": "merged",
                "author": {"username": "alice", "name": "Alice"},
                "reviewers": [{"username": "bob"}],
                "source_branch": "feature/ledger", "target_branch": "main",
                "created_at": "2026-03-02T09:00:00Z", "updated_at": "2026-03-04T09:00:00Z",
                "merged_at": "2026-03-04T09:00:00Z", "closed_at": None,
                "user_notes_count": 4, "labels": ["finance"], "draft": False,
            },
        ])
    if path == f"{PROJECT}/merge_requests/7/changes":
        return httpx.Response(200, json={"changes": [{"old_path": "app.py", "new_path": "app.py", "diff": DIFF}]})
    if path == f"{PROJECT}/merge_requests/7/notes":
        return httpx.Response(200, json=[
            {"author": {"username": "gitlab-bot"}, "body": "added 3 commits", "system": True,
             "created_at": "2026-03-02T09:10:00Z"},
            {"author": {"username": "bob"}, "body": "ok", "system": False,
             "created_at": "2026-03-02T09:20:00Z"},
            {"author": {"username": "bob"}, "body": "requested changes", "system": True,
             "created_at": "2026-03-02T09:30:00Z"},
        ])
    return httpx.Response(404)


@pytest.fixture
def strategy(settings):
    return GitLabStrategy(settings, transport=httpx.MockTransport(gitlab_api))


def test_count_diff_lines_ignores_file_headers():
    assert count_diff_lines(DIFF) == (2, 1)
    assert count_diff_lines(None) == (0, 0)


class TestGitLabCommits:
    async def test_follows_next_page_header(self, strategy):
        commits = await strategy.fetch_commits(REPO, "main", CREDENTIAL, SINCE)
        assert [c.sha for c in commits] == ["g1", "g2", "g3"]

    async def test_stats_and_file_changes(self, strategy):
        commits = await strategy.fetch_commits(REPO, "main", CREDENTIAL, SINCE)
        first = commits[0]
        assert (first.added_lines, first.removed_lines, first.changed_lines) == (2, 1, 3)
        assert first.files_changed == 3
        by_path = {fc.path: fc for fc in first.file_changes}
        assert by_path["app.py"].added_lines == 2
        assert by_path["b.txt"].change_type == FileChangeType.RENAMED
        assert by_path["b.txt"].previous_path == "a.txt"
        assert by_path["img.bin"].is_binary

    async def test_timestamps_are_normalized_to_utc(self, strategy):
        commits = await strategy.fetch_commits(REPO, "main", CREDENTIAL, SINCE)
        assert commits[1].committed_at == datetime(2026, 3, 3, 6, tzinfo=timezone.utc)
        assert commits[2].committed_at == datetime(2026, 3, 2, 8, 0, 0, 123456, tzinfo=timezone.utc)

    async def test_project_path_is_url_encoded(self, settings):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[])

        strategy = GitLabStrategy(settings, transport=httpx.MockTransport(handler))
        await strategy.fetch_commits(REPO, "main", CREDENTIAL, SINCE)

        assert b"/projects/acme%2Fplatform%2Fapi/repository/commits" in seen[0].url.raw_path
        assert seen[0].headers["PRIVATE-TOKEN"] == "glpat-test"
        assert seen[0].url.params["ref_name"] == "main"


class TestGitLabMergeRequests:
    async def test_merge_request_fields(self, strategy):
        mrs = await strategy.fetch_merge_requests(REPO, "main", CREDENTIAL, SINCE)
        assert len(mrs) == 1
        mr = mrs[0]
        assert mr.external_id == "7"
        assert mr.state == MergeRequestState.MERGED
        assert mr.reviewers == ["bob"]
        assert mr.comment_count == 4
        assert (mr.added_lines, mr.removed_lines, mr.files_changed) == (2, 1, 1)

    async def test_pickup_skips_short_comments_and_unrelated_system_notes(self, strategy):
        mrs = await strategy.fetch_merge_requests(REPO, "main", CREDENTIAL, SINCE)
        mr = mrs[0]
        assert mr.picked_for_review_at == datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)
        assert mr.review_pickup_ms == 30 * 60 * 1000
