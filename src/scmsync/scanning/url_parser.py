"""Git URL parsing: derive platform, owner and repository from a clone/web URL.

Supported forms (``.git`` suffix and trailing slash optional):

- GitHub / GitHub Enterprise: ``https://github.com/{owner}/{repo}``
- GitLab (any host, nested groups): ``https://gitlab.com/{group}/{sub}/{repo}``
- Bitbucket Cloud: ``https://bitbucket.org/{workspace}/{repo}``
- Bitbucket Server: ``https://{host}[/bitbucket]/scm/{project}/{repo}``
- Azure Repos: ``https://dev.azure.com/{org}/{project}/_git/{repo}`` and
  ``https://{org}.visualstudio.com/{project}/_git/{repo}``
- SSH remotes (``git@host:owner/repo.git``, ``ssh://git@host/owner/repo``)
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict

from scmsync.errors.exceptions import ConfigurationError
from scmsync.models.enums import GitPlatform
from scmsync.platforms import resolve_platform

logger = logging.getLogger(__name__)

_SCP_LIKE_RE = re.compile(r"^(?:[\w.-]+@)?(?P<host>[\w.-]+):(?!//)(?P<path>.+)$")

_KNOWN_HOSTS: dict[str, GitPlatform] = {
    "github.com": GitPlatform.GITHUB,
    "gitlab.com": GitPlatform.GITLAB,
    "bitbucket.org": GitPlatform.BITBUCKET,
    "dev.azure.com": GitPlatform.AZURE_REPOS,
    "ssh.dev.azure.com": GitPlatform.AZURE_REPOS,
}


class GitUrlInfo(BaseModel):
    """Parsed repository identity, derived once per scan."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    platform: GitPlatform
    host: str
    server_url: str
    owner: str
    repository: str
    namespace: str | None = None  # GitLab full group path
    organization: str | None = None  # Azure organization
    project: str | None = None  # Azure project / Bitbucket Server project key
    clone_url: str

    @property
    def full_name(self) -> str:
        return f"{self.namespace or self.owner}/{self.repository}"

    @property
    def is_cloud(self) -> bool:
        return self.host in _KNOWN_HOSTS

    @property
    def is_bitbucket_server(self) -> bool:
        return self.platform == GitPlatform.BITBUCKET and self.project is not None and not self.is_cloud


def parse_git_url(
    url: str | None,
    tool_type: str | None = None,
    repository_name: str | None = None,
    username: str | None = None,
) -> GitUrlInfo:
    """Parse a repository URL, cross-checking it against the declared tool type.

    When no URL is given, ``repository_name`` of the form ``owner/repo`` (or a
    bare repository name plus ``username``) is accepted for GitHub and
    Bitbucket Cloud.

    Raises:
        ConfigurationError: empty/unsupported URL, unknown tool type, or a URL
            that belongs to a different platform than ``tool_type``.
    """
    declared = resolve_platform(tool_type) if tool_type else None

    if not url or not url.strip():
        return _from_repository_name(declared, repository_name, username)

    scheme, host, segments = _split(url.strip())
    detected = _detect_platform(host, segments)
    platform = declared or detected
    if platform is None:
        raise ConfigurationError(f"Unsupported Git URL format: {url}")
    if declared and detected and declared != detected:
        raise ConfigurationError(
            f"Repository URL {url} belongs to {detected}, but the scan was declared as {declared}",
            details={"declared": str(declared), "detected": str(detected)},
        )

    server_url = f"{scheme}://{host}"
    try:
        if platform == GitPlatform.AZURE_REPOS:
            return _parse_azure(scheme, host, segments, server_url)
        if platform == GitPlatform.GITLAB:
            return _parse_gitlab(host, segments, server_url)
        if platform == GitPlatform.BITBUCKET:
            return _parse_bitbucket(host, segments, server_url)
        return _parse_github(host, segments, server_url)
    except (IndexError, ValueError) as exc:
        raise ConfigurationError(f"Unsupported Git URL format: {url}") from exc


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _split(url: str) -> tuple[str, str, list[str]]:
    """Return (scheme, host[:port], path segments) with ``.git`` stripped."""
    scp = _SCP_LIKE_RE.match(url)
    if scp and "://" not in url:
        url = f"https://{scp.group('host')}/{scp.group('path')}"

    parts = urlsplit(url)
    if not parts.hostname:
        raise ConfigurationError(f"Unsupported Git URL format: {url}")

    scheme = parts.scheme if parts.scheme in ("http", "https") else "https"
    host = parts.hostname.lower()
    if parts.port and parts.port not in (22, 80, 443):
        host = f"{host}:{parts.port}"

    segments = [s for s in parts.path.split("/") if s]
    if segments and segments[-1].endswith(".git"):
        segments[-1] = segments[-1][: -len(".git")]
    return scheme, host, segments


def _detect_platform(host: str, segments: list[str]) -> GitPlatform | None:
    bare_host = host.split(":", 1)[0]
    if bare_host in _KNOWN_HOSTS:
        return _KNOWN_HOSTS[bare_host]
    if bare_host.endswith(".visualstudio.com") or "_git" in segments:
        return GitPlatform.AZURE_REPOS
    if "scm" in segments:
        return GitPlatform.BITBUCKET
    if "gitlab" in bare_host:
        return GitPlatform.GITLAB
    if "github" in bare_host:
        return GitPlatform.GITHUB
    return None


def _parse_github(host: str, segments: list[str], server_url: str) -> GitUrlInfo:
    if len(segments) < 2:
        raise ValueError("owner and repository required")
    owner, repo = segments[0], segments[1]
    return GitUrlInfo(
        platform=GitPlatform.GITHUB,
        host=host,
        server_url=server_url,
        owner=owner,
        repository=repo,
        clone_url=f"{server_url}/{owner}/{repo}.git",
    )


def _parse_gitlab(host: str, segments: list[str], server_url: str) -> GitUrlInfo:
    # Web URLs such as /group/repo/-/tree/main carry a "-" separator
    if "-" in segments:
        segments = segments[: segments.index("-")]
    if len(segments) < 2:
        raise ValueError("group and repository required")
    repo = segments[-1]
    namespace = "/".join(segments[:-1])
    return GitUrlInfo(
        platform=GitPlatform.GITLAB,
        host=host,
        server_url=server_url,
        owner=segments[0],
        repository=repo,
        namespace=namespace,
        clone_url=f"{server_url}/{namespace}/{repo}.git",
    )


def _parse_bitbucket(host: str, segments: list[str], server_url: str) -> GitUrlInfo:
    if "scm" in segments:
        idx = segments.index("scm")
        project_key, repo = segments[idx + 1], segments[idx + 2]
        context = "/".join(segments[:idx])
        base = f"{server_url}/{context}" if context else server_url
        return GitUrlInfo(
            platform=GitPlatform.BITBUCKET,
            host=host,
            server_url=base,
            owner=project_key,
            repository=repo,
            project=project_key,
            clone_url=f"{base}/scm/{project_key}/{repo}.git",
        )
    if len(segments) < 2:
        raise ValueError("workspace and repository required")
    workspace, repo = segments[0], segments[1]
    return GitUrlInfo(
        platform=GitPlatform.BITBUCKET,
        host=host,
        server_url=server_url,
        owner=workspace,
        repository=repo,
        clone_url=f"{server_url}/{workspace}/{repo}.git",
    )


def _parse_azure(scheme: str, host: str, segments: list[str], server_url: str) -> GitUrlInfo:
    idx = segments.index("_git")
    repo = segments[idx + 1]
    if host.endswith(".visualstudio.com"):
        organization = host.split(".", 1)[0]
        project_parts = segments[:idx]
    else:
        organization = segments[0]
        project_parts = segments[1:idx]
    # /{org}/_git/{repo} addresses the repository named like its project
    project = project_parts[-1] if project_parts else repo
    return GitUrlInfo(
        platform=GitPlatform.AZURE_REPOS,
        host=host,
        server_url=server_url,
        owner=organization,
        repository=repo,
        organization=organization,
        project=project,
        clone_url=f"https://dev.azure.com/{organization}/{project}/_git/{repo}",
    )


def _from_repository_name(
    declared: GitPlatform | None,
    repository_name: str | None,
    username: str | None,
) -> GitUrlInfo:
    if not repository_name:
        raise ConfigurationError("Repository URL cannot be empty")
    if declared not in (GitPlatform.GITHUB, GitPlatform.BITBUCKET):
        raise ConfigurationError(
            f"A repository URL is required for {declared or 'an undeclared platform'}"
        )

    if "/" in repository_name:
        owner, repo = repository_name.strip("/").split("/", 1)
    elif username:
        owner, repo = username, repository_name
    else:
        raise ConfigurationError(
            f"Repository name '{repository_name}' must be 'owner/repository' when no URL is given"
        )

    host = "github.com" if declared == GitPlatform.GITHUB else "bitbucket.org"
    server_url = f"https://{host}"
    logger.debug("Derived repository identity %s/%s from name", owner, repo)
    return GitUrlInfo(
        platform=declared,
        host=host,
        server_url=server_url,
        owner=owner,
        repository=repo,
        clone_url=f"{server_url}/{owner}/{repo}.git",
    )
