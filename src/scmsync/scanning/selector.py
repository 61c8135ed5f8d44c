"""Strategy selection: parsed repository -> platform fetch strategy."""

from __future__ import annotations

import logging

import httpx

from scmsync.config import Settings, settings as default_settings
from scmsync.errors.exceptions import ConfigurationError
from scmsync.models.enums import GitPlatform
from scmsync.platforms import AVAILABLE_STRATEGIES, import_strategy
from scmsync.platforms.base import PlatformFetchStrategy
from scmsync.platforms.git_clone import GitCloneCommitStrategy
from scmsync.ratelimit.coordinator import RateLimitCoordinator
from scmsync.scanning.url_parser import GitUrlInfo

logger = logging.getLogger(__name__)


class StrategySelector:
    """Resolves and caches one strategy instance per platform.

    All strategies share the selector's rate limit coordinator, so every scan
    running through the same selector draws from one budget per credential.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        coordinator: RateLimitCoordinator | None = None,
        *,
        strategies: dict[GitPlatform, PlatformFetchStrategy] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or default_settings
        self.coordinator = coordinator or RateLimitCoordinator(self.settings)
        self._transport = transport
        self._strategies: dict[GitPlatform, PlatformFetchStrategy] = dict(strategies or {})
        self._clone_strategies: dict[GitPlatform, GitCloneCommitStrategy] = {}

    def select(self, repo: GitUrlInfo, clone_enabled: bool = False) -> PlatformFetchStrategy:
        """Return the strategy for a parsed repository.

        Bitbucket URLs on a self-hosted ``/scm/`` path go to the Server API.
        With ``clone_enabled`` commits are read from a local clone and the
        rest still comes from the platform's REST API.

        Raises:
            ConfigurationError: no strategy registered for the platform.
        """
        platform = GitPlatform.BITBUCKET_SERVER if repo.is_bitbucket_server else repo.platform
        strategy = self._get_strategy(platform)
        if not clone_enabled:
            return strategy
        if platform not in self._clone_strategies:
            self._clone_strategies[platform] = GitCloneCommitStrategy(strategy)
        logger.debug("Reading commits for %s from a local clone", repo.full_name)
        return self._clone_strategies[platform]

    def _get_strategy(self, platform: GitPlatform) -> PlatformFetchStrategy:
        """Get or lazy-load a strategy by platform."""
        if platform not in self._strategies:
            dotted = AVAILABLE_STRATEGIES.get(platform)
            if not dotted:
                raise ConfigurationError(f"No fetch strategy registered for {platform}")
            cls = import_strategy(dotted)
            self._strategies[platform] = cls(self.settings, self.coordinator, transport=self._transport)
        return self._strategies[platform]
