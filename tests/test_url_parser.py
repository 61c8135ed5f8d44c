"""Tests for Git URL parsing and tool-type resolution."""

import pytest

from scmsync.errors.exceptions import ConfigurationError
from scmsync.models.enums import GitPlatform
from scmsync.platforms import resolve_platform
from scmsync.scanning.url_parser import parse_git_url


# ---------------------------------------------------------------------------
# Platform detection
# ---------------------------------------------------------------------------


class TestParseGitUrl:
    def test_github_https(self):
        info = parse_git_url("https://github.com/octo/app.git")
        assert info.platform == GitPlatform.GITHUB
        assert info.owner == "octo"
        assert info.repository == "app"
        assert info.full_name == "octo/app"
        assert info.is_cloud

    def test_github_ssh_scp_form(self):
        info = parse_git_url("git@github.com:octo/app.git", tool_type="github")
        assert info.platform == GitPlatform.GITHUB
        assert info.full_name == "octo/app"
        assert info.server_url == "https://github.com"

    def test_github_enterprise_requires_declared_type(self):
        info = parse_git_url("https://code.acme.io/team/service", tool_type="github")
        assert info.platform == GitPlatform.GITHUB
        assert info.host == "code.acme.io"
        assert not info.is_cloud

    def test_gitlab_nested_groups(self):
        info = parse_git_url("https://gitlab.com/acme/platform/payments/api.git")
        assert info.platform == GitPlatform.GITLAB
        assert info.owner == "acme"
        assert info.namespace == "acme/platform/payments"
        assert info.repository == "api"
        assert info.full_name == "acme/platform/payments/api"

    def test_gitlab_web_url_stops_at_separator(self):
        info = parse_git_url("https://gitlab.com/acme/api/-/tree/main")
        assert info.full_name == "acme/api"

    def test_self_managed_gitlab_keeps_port(self):
        info = parse_git_url("https://gitlab.internal:8443/team/app", tool_type="gitlab")
        assert info.host == "gitlab.internal:8443"
        assert info.server_url == "https://gitlab.internal:8443"

    def test_bitbucket_cloud(self):
        info = parse_git_url("https://bitbucket.org/acme-ws/widgets")
        assert info.platform == GitPlatform.BITBUCKET
        assert info.owner == "acme-ws"
        assert info.repository == "widgets"
        assert info.project is None
        assert not info.is_bitbucket_server

    def test_bitbucket_server_scm_path(self):
        info = parse_git_url("https://git.acme.io/bitbucket/scm/PAY/ledger.git")
        assert info.platform == GitPlatform.BITBUCKET
        assert info.project == "PAY"
        assert info.repository == "ledger"
        assert info.server_url == "https://git.acme.io/bitbucket"
        assert info.is_bitbucket_server

    def test_azure_dev_azure_com(self):
        info = parse_git_url("https://dev.azure.com/contoso/Fabrikam/_git/web")
        assert info.platform == GitPlatform.AZURE_REPOS
        assert info.organization == "contoso"
        assert info.project == "Fabrikam"
        assert info.repository == "web"

    def test_azure_visualstudio_host(self):
        info = parse_git_url("https://contoso.visualstudio.com/Fabrikam/_git/web")
        assert info.platform == GitPlatform.AZURE_REPOS
        assert info.organization == "contoso"
        assert info.project == "Fabrikam"
        assert info.clone_url == "https://dev.azure.com/contoso/Fabrikam/_git/web"


# ---------------------------------------------------------------------------
# Errors and fallbacks
# ---------------------------------------------------------------------------


class TestParseGitUrlErrors:
    def test_empty_url_without_name(self):
        with pytest.raises(ConfigurationError, match="cannot be empty"):
            parse_git_url("", tool_type="github")

    def test_unknown_host(self):
        with pytest.raises(ConfigurationError, match="Unsupported Git URL format"):
            parse_git_url("https://example.com/a/b")

    def test_platform_mismatch(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_git_url("https://gitlab.com/acme/api", tool_type="github")
        assert exc_info.value.details == {"declared": "github", "detected": "gitlab"}

    def test_missing_repository_segment(self):
        with pytest.raises(ConfigurationError):
            parse_git_url("https://github.com/octo")

    def test_repository_name_fallback(self):
        info = parse_git_url(None, tool_type="github", repository_name="octo/app")
        assert info.full_name == "octo/app"
        assert info.host == "github.com"

    def test_bare_name_uses_username(self):
        info = parse_git_url(None, tool_type="bitbucket", repository_name="widgets", username="acme-ws")
        assert info.full_name == "acme-ws/widgets"

    def test_name_fallback_not_available_for_gitlab(self):
        with pytest.raises(ConfigurationError):
            parse_git_url(None, tool_type="gitlab", repository_name="acme/api")


class TestResolvePlatform:
    @pytest.mark.parametrize("tool_type,expected", [
        ("GitHub", GitPlatform.GITHUB),
        ("gitlab", GitPlatform.GITLAB),
        ("azure-devops", GitPlatform.AZURE_REPOS),
        ("AzureRepos", GitPlatform.AZURE_REPOS),
        ("bitbucket", GitPlatform.BITBUCKET),
    ])
    def test_aliases(self, tool_type, expected):
        assert resolve_platform(tool_type) == expected

    def test_unknown_tool_type(self):
        with pytest.raises(ConfigurationError, match="Unknown tool type"):
            resolve_platform("perforce")
