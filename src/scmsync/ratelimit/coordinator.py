"""Rate Limit Coordinator: the shared request budget for every platform call.

Each (platform, credential) pair owns a sliding window of recent request
timestamps. Callers await :meth:`RateLimitCoordinator.check_rate_limit` before
every outbound request; when the window is full the caller sleeps until the
oldest request leaves it. Platform-reported cooldowns (``Retry-After``,
``X-RateLimit-Reset``) are registered with :meth:`defer` and block every caller
sharing the credential until they expire.

Credentials are keyed by a SHA-256 digest and are never logged.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from scmsync.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

# Usage ratio above which a warning is logged
_USAGE_WARNING_THRESHOLD = 0.8


@dataclass(frozen=True)
class RateLimitStatus:
    """Snapshot of one (platform, credential) window."""

    platform: str
    limit: int
    used: int
    cooldown_seconds: float = 0.0

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)


def credential_fingerprint(secret: str | None) -> str:
    """Stable, non-reversible key for a credential secret."""
    if not secret:
        return "anonymous"
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()[:16]


class RateLimitCoordinator:
    """Sliding-window budget shared by all concurrent scans."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._settings = settings or default_settings
        self._clock = clock
        self._sleep = sleep
        self._windows: dict[tuple[str, str], deque[float]] = {}
        self._cooldowns: dict[tuple[str, str], float] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    @property
    def enabled(self) -> bool:
        return self._settings.rate_limit_enabled

    async def check_rate_limit(
        self,
        platform: str,
        credential: str | None,
        repository_path: str | None = None,
        server_url: str | None = None,
    ) -> float:
        """Wait until a request slot is free. Returns the seconds spent waiting."""
        if not self.enabled:
            return 0.0

        key = (platform, credential_fingerprint(credential))
        lock = self._locks.setdefault(key, asyncio.Lock())
        waited = 0.0

        async with lock:
            cooldown_until = self._cooldowns.pop(key, None)
            if cooldown_until is not None:
                delay = min(cooldown_until - self._clock(), self._settings.max_retry_wait_seconds)
                if delay > 0:
                    logger.info(
                        "Rate limit cooldown for %s (%s): waiting %.1fs",
                        platform, repository_path or server_url or "-", delay,
                    )
                    await self._sleep(delay)
                    waited += delay

            window = self._windows.setdefault(key, deque())
            budget = self._settings.rate_budget_for(platform)
            span = self._settings.rate_limit_window_seconds

            now = self._clock()
            self._prune(window, now, span)
            if len(window) >= budget:
                delay = span - (now - window[0])
                if delay > 0:
                    logger.debug(
                        "Rate limit budget for %s exhausted (%d/%d); waiting %.2fs",
                        platform, len(window), budget, delay,
                    )
                    await self._sleep(delay)
                    waited += delay
                now = self._clock()
                self._prune(window, now, span)
            window.append(now)

            if len(window) == int(budget * _USAGE_WARNING_THRESHOLD):
                logger.warning(
                    "Rate limit usage for %s reached %d%% of %d requests per %.0fs",
                    platform, int(_USAGE_WARNING_THRESHOLD * 100), budget, span,
                )
        return waited

    def defer(self, platform: str, credential: str | None, seconds: float) -> None:
        """Register a platform-reported cooldown for every caller of this credential."""
        if not self.enabled:
            return
        seconds = min(max(seconds, 0.0), self._settings.max_retry_wait_seconds)
        key = (platform, credential_fingerprint(credential))
        until = self._clock() + seconds
        self._cooldowns[key] = max(self._cooldowns.get(key, 0.0), until)
        logger.warning("Platform %s asked to back off for %.1fs", platform, seconds)

    def status(self, platform: str, credential: str | None) -> RateLimitStatus:
        key = (platform, credential_fingerprint(credential))
        window = self._windows.get(key, deque())
        now = self._clock()
        self._prune(window, now, self._settings.rate_limit_window_seconds)
        cooldown = max(self._cooldowns.get(key, now) - now, 0.0)
        return RateLimitStatus(
            platform=platform,
            limit=self._settings.rate_budget_for(platform),
            used=len(window),
            cooldown_seconds=cooldown,
        )

    @staticmethod
    def _prune(window: deque[float], now: float, span: float) -> None:
        while window and now - window[0] >= span:
            window.popleft()
