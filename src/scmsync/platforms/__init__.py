"""Strategy registry: maps platform -> lazy-import class path."""

from scmsync.errors.exceptions import ConfigurationError
from scmsync.models.enums import GitPlatform

AVAILABLE_STRATEGIES: dict[GitPlatform, str] = {
    GitPlatform.GITHUB: "scmsync.platforms.github.GitHubStrategy",
    GitPlatform.GITLAB: "scmsync.platforms.gitlab.GitLabStrategy",
    GitPlatform.BITBUCKET: "scmsync.platforms.bitbucket.BitbucketStrategy",
    GitPlatform.BITBUCKET_SERVER: "scmsync.platforms.bitbucket_server.BitbucketServerStrategy",
    GitPlatform.AZURE_REPOS: "scmsync.platforms.azure_repos.AzureReposStrategy",
}

# Tool-type names used by connection configs and callers
TOOL_TYPE_ALIASES: dict[str, GitPlatform] = {
    "github": GitPlatform.GITHUB,
    "gitlab": GitPlatform.GITLAB,
    "bitbucket": GitPlatform.BITBUCKET,
    "azure": GitPlatform.AZURE_REPOS,
    "azure_repos": GitPlatform.AZURE_REPOS,
    "azurerepo": GitPlatform.AZURE_REPOS,
    "azurerepos": GitPlatform.AZURE_REPOS,
    "azuredevops": GitPlatform.AZURE_REPOS,
    "azure_devops": GitPlatform.AZURE_REPOS,
}


def resolve_platform(tool_type: str) -> GitPlatform:
    """Map a tool-type name (case/separator-insensitive) to a platform."""
    normalized = (tool_type or "").strip().lower().replace("-", "_").replace(" ", "_")
    platform = TOOL_TYPE_ALIASES.get(normalized) or TOOL_TYPE_ALIASES.get(normalized.replace("_", ""))
    if platform is None:
        raise ConfigurationError(f"Unknown tool type: {tool_type!r}")
    return platform


def import_strategy(dotted_path: str):
    """Import a strategy class from its dotted module path."""
    import importlib

    module_path, class_name = dotted_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    return getattr(module, class_name)
