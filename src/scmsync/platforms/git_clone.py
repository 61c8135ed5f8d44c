"""Local-clone commit strategy: ``git clone`` then ``git log --numstat``.

Commits come from a temporary bare clone of the branch, which carries exact
per-file line counts without one REST call per commit. Repositories and
merge requests still come from the platform's REST strategy.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import os
import tempfile
from collections.abc import AsyncIterator
from datetime import datetime
from pathlib import Path

from scmsync.errors.exceptions import (
    ConfigurationError,
    PlatformApiError,
    PlatformAuthenticationError,
    RepositoryNotFoundError,
    TransientPlatformError,
)
from scmsync.models.enums import FileChangeType, GitPlatform
from scmsync.models.records import CommitRecord, FileChange, MergeRequestRecord, RepositoryRecord
from scmsync.models.scan import Credential
from scmsync.platforms.base import PlatformFetchStrategy, after_window, is_binary_path
from scmsync.scanning.url_parser import GitUrlInfo
from scmsync.services.timeutil import parse_datetime, to_iso

logger = logging.getLogger(__name__)

COMMIT_MARKER = "@@@"
# sha, parents, author name/email/date, committer name/email/date, subject
LOG_FORMAT = f"{COMMIT_MARKER}%H%x09%P%x09%an%x09%ae%x09%aI%x09%cn%x09%ce%x09%cI%x09%s"

# User name sent with a bare token over HTTPS
_TOKEN_USERNAMES = {
    GitPlatform.GITHUB: "x-access-token",
    GitPlatform.GITLAB: "oauth2",
    GitPlatform.BITBUCKET: "x-token-auth",
}

_AUTH_FAILURES = ("authentication failed", "could not read username", "invalid username or password", "403")
_NOT_FOUND = ("not found", "does not exist", "does not appear to be a git repository")


async def run_git(
    args: list[str],
    cwd: Path,
    timeout_s: float,
    env: dict[str, str] | None = None,
) -> tuple[int, str, str]:
    """Run one git command and return (exit code, stdout, stderr)."""
    proc = await asyncio.create_subprocess_exec(
        "git", *args,
        cwd=str(cwd),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env={**os.environ, "GIT_TERMINAL_PROMPT": "0", **(env or {})},
    )
    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        proc.kill()
        await proc.wait()
        raise
    return proc.returncode, out.decode("utf-8", "replace"), err.decode("utf-8", "replace")


def normalize_numstat_path(path: str) -> tuple[str, str | None]:
    """Return (path, previous path) for a numstat path, expanding rename syntax.

    ``src/{old => new}/file.py`` becomes ``("src/new/file.py", "src/old/file.py")``.
    """
    p = path.strip()
    if " => " not in p:
        return p, None
    if "{" in p and "}" in p:
        prefix, rest = p.split("{", 1)
        inner, suffix = rest.split("}", 1)
        old, new = inner.split(" => ", 1)
        return (prefix + new + suffix).replace("//", "/"), (prefix + old + suffix).replace("//", "/")
    old, new = p.split(" => ", 1)
    return new, old


def parse_numstat_log(output: str, repo: GitUrlInfo, branch: str | None) -> list[CommitRecord]:
    """Parse ``git log --numstat`` output written with :data:`LOG_FORMAT`."""
    commits: list[CommitRecord] = []
    current: CommitRecord | None = None

    for raw_line in output.splitlines():
        line = raw_line.rstrip("\n")
        if not line:
            continue
        if line.startswith(COMMIT_MARKER):
            parts = line[len(COMMIT_MARKER):].split("\t", 8)
            if len(parts) < 9:
                logger.debug("Skipping malformed log header: %r", line)
                current = None
                continue
            sha, parents, author, author_email, authored, committer, committer_email, committed, subject = parts
            parent_shas = parents.split()
            current = CommitRecord(
                sha=sha,
                repository_name=repo.full_name,
                repo_slug=repo.repository,
                branch_names=[branch] if branch else [],
                message=subject,
                author_name=author or None,
                author_email=author_email or None,
                committer_name=committer or None,
                committer_email=committer_email or None,
                authored_at=parse_datetime(authored),
                committed_at=parse_datetime(committed),
                parent_shas=parent_shas,
                is_merge_commit=len(parent_shas) > 1,
                added_lines=0,
                removed_lines=0,
                changed_lines=0,
                files_changed=0,
                platform_data={"source": "clone"},
            )
            commits.append(current)
            continue

        if current is None:
            continue
        parts = line.split("\t", 2)
        if len(parts) < 3:
            continue
        added_s, deleted_s, raw_path = parts
        path, previous = normalize_numstat_path(raw_path)
        binary = added_s == "-" or deleted_s == "-"
        try:
            added = 0 if binary else int(added_s)
            deleted = 0 if binary else int(deleted_s)
        except ValueError:
            continue

        current.file_changes.append(FileChange(
            path=path,
            previous_path=previous,
            change_type=FileChangeType.RENAMED if previous else FileChangeType.MODIFIED,
            added_lines=added,
            removed_lines=deleted,
            changed_lines=added + deleted,
            is_binary=binary or is_binary_path(path),
        ))
        current.files_changed += 1
        current.added_lines += added
        current.removed_lines += deleted
        current.changed_lines += added + deleted

    return commits


class GitCloneCommitStrategy(PlatformFetchStrategy):
    """Reads commits from a local clone; delegates everything else to REST."""

    def __init__(self, delegate: PlatformFetchStrategy):
        super().__init__(delegate.settings, delegate.coordinator)
        self.delegate = delegate
        self.platform = delegate.platform

    def api_base_url(self, repo: GitUrlInfo) -> str:
        return self.delegate.api_base_url(repo)

    def auth_for(self, credential: Credential):
        return self.delegate.auth_for(credential)

    async def fetch_repositories(
        self,
        repo: GitUrlInfo,
        credential: Credential,
        since: datetime | None = None,
    ) -> list[RepositoryRecord]:
        return await self.delegate.fetch_repositories(repo, credential, since)

    def iter_merge_requests(
        self,
        repo: GitUrlInfo,
        branch: str | None,
        credential: Credential,
        since: datetime | None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[MergeRequestRecord]:
        return self.delegate.iter_merge_requests(repo, branch, credential, since, until, limit)

    def git_auth_env(self, credential: Credential) -> dict[str, str]:
        """Basic auth header passed through git's environment config, never the URL or argv."""
        if not credential.secret:
            return {}
        username = credential.username or _TOKEN_USERNAMES.get(self.platform, "git")
        basic = base64.b64encode(f"{username}:{credential.secret}".encode()).decode()
        return {
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "http.extraHeader",
            "GIT_CONFIG_VALUE_0": f"Authorization: Basic {basic}",
        }

    async def iter_commits(
        self,
        repo: GitUrlInfo,
        branch: str | None,
        credential: Credential,
        since: datetime | None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[CommitRecord]:
        timeout = self.settings.clone_timeout_seconds
        workdir = self.settings.clone_directory
        if workdir:
            Path(workdir).mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix="scmsync-", dir=workdir) as tmp:
            target = Path(tmp) / "repo.git"
            clone_args = ["clone", "--bare", "--quiet", "--no-tags", "--single-branch"]
            if branch:
                clone_args += ["--branch", branch]
            logger.info("Cloning %s into a temporary directory", repo.full_name)
            await self._git([*clone_args, repo.clone_url, str(target)], Path(tmp), timeout, credential)

            log_args = ["log", "--date=iso-strict", f"--pretty=format:{LOG_FORMAT}", "--numstat"]
            if since:
                log_args.append(f"--since={to_iso(since)}")
            if until:
                log_args.append(f"--until={to_iso(until)}")
            log_args.append(branch or "HEAD")
            out = await self._git(log_args, target, timeout, credential)

        count = 0
        for record in parse_numstat_log(out, repo, branch):
            # --since filters on committer date; keep the REST window semantics exact
            if after_window(record.committed_at, until):
                continue
            yield record
            count += 1
            if limit and count >= limit:
                return

    async def _git(self, args: list[str], cwd: Path, timeout: float, credential: Credential) -> str:
        try:
            code, out, err = await run_git(args, cwd, timeout, self.git_auth_env(credential))
        except FileNotFoundError as exc:
            raise ConfigurationError("git executable not found; local-clone scanning is unavailable") from exc
        except asyncio.TimeoutError as exc:
            raise TransientPlatformError(self.platform, f"git {args[0]} timed out after {timeout:.0f}s") from exc

        if code == 0:
            return out
        message = err.strip().splitlines()[-1] if err.strip() else f"exit code {code}"
        lowered = err.lower()
        if any(marker in lowered for marker in _AUTH_FAILURES):
            raise PlatformAuthenticationError(self.platform, f"git {args[0]} rejected credentials: {message}")
        if any(marker in lowered for marker in _NOT_FOUND):
            raise RepositoryNotFoundError(self.platform, f"git {args[0]}: {message}")
        raise PlatformApiError(self.platform, f"git {args[0]} failed: {message}")
