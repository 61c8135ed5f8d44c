"""Shared HTTP client for platform REST calls.

Every outbound request follows the same path: consult the rate limit
coordinator, send through ``httpx.AsyncClient``, classify the response into the
platform error taxonomy, and retry transient failures with a bounded number of
attempts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from scmsync.config import Settings
from scmsync.errors.exceptions import (
    PlatformApiError,
    PlatformAuthenticationError,
    RateLimitedError,
    RepositoryNotFoundError,
    TransientPlatformError,
)
from scmsync.ratelimit.coordinator import RateLimitCoordinator
from scmsync.ratelimit.retry import exponential_backoff, with_retry

logger = logging.getLogger(__name__)


class PlatformHttpClient:
    """Rate-limited, retrying JSON client bound to one platform and credential.

    Use as an async context manager::

        async with PlatformHttpClient(...) as http:
            payload = await http.get_json("/repos/octo/app")
    """

    def __init__(
        self,
        platform: str,
        base_url: str,
        *,
        coordinator: RateLimitCoordinator,
        settings: Settings,
        credential_secret: str | None = None,
        headers: dict[str, str] | None = None,
        auth: httpx.Auth | tuple[str, str] | None = None,
        repository_path: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.platform = platform
        self.base_url = base_url.rstrip("/")
        self._coordinator = coordinator
        self._settings = settings
        self._secret = credential_secret
        self._headers = headers or {}
        self._auth = auth
        self._repository_path = repository_path
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None
        self.request_count = 0

    async def __aenter__(self) -> PlatformHttpClient:
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers,
            auth=self._auth,
            timeout=self._settings.timeout_for(self.platform),
            transport=self._transport,
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def get(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """GET with rate limiting, classification and bounded retry."""
        if self._client is None:
            raise RuntimeError("PlatformHttpClient must be used as an async context manager")

        async def _attempt() -> httpx.Response:
            await self._coordinator.check_rate_limit(
                self.platform, self._secret, self._repository_path, self.base_url,
            )
            self.request_count += 1
            try:
                response = await self._client.get(url, params=params)
            except httpx.TimeoutException as exc:
                raise TransientPlatformError(self.platform, f"Timed out calling {url}") from exc
            except httpx.TransportError as exc:
                raise TransientPlatformError(self.platform, f"Transport error calling {url}: {exc}") from exc
            self._raise_for_status(response, url)
            return response

        backoff = exponential_backoff(
            self._settings.http_retry_backoff_seconds,
            self._settings.max_retry_wait_seconds,
        )

        def _delay(exc: Exception, attempt: int) -> float:
            # Platform cooldowns are shared through the coordinator, which the
            # next attempt waits on before sending.
            if isinstance(exc, RateLimitedError) and exc.retry_after is not None and self._coordinator.enabled:
                self._coordinator.defer(self.platform, self._secret, exc.retry_after)
                return 0.0
            return backoff(exc, attempt)

        return await with_retry(
            _attempt,
            max_attempts=self._settings.http_retry_attempts,
            delay_for=_delay,
            sleep=self._sleep,
            description=f"{self.platform} GET {url}",
        )

    async def get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        response = await self.get(url, params)
        return self.decode(response, url)

    def decode(self, response: httpx.Response, url: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise PlatformApiError(
                self.platform, f"Invalid JSON from {url}", response.status_code,
            ) from exc

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def _raise_for_status(self, response: httpx.Response, url: str) -> None:
        status = response.status_code
        if status < 400:
            return

        if status == 429 or (status == 403 and response.headers.get("X-RateLimit-Remaining") == "0"):
            raise RateLimitedError(
                self.platform,
                f"Rate limited on {url}",
                status,
                retry_after=_retry_after_seconds(response),
            )
        if status in (401, 403):
            raise PlatformAuthenticationError(
                self.platform, f"Credentials rejected ({status}) for {url}", status,
            )
        if status == 404:
            raise RepositoryNotFoundError(self.platform, f"Not found: {url}", status)
        if status >= 500:
            raise TransientPlatformError(self.platform, f"Server error {status} on {url}", status)
        raise PlatformApiError(
            self.platform,
            f"Request to {url} failed with {status}: {response.text[:300]}",
            status,
        )


def _retry_after_seconds(response: httpx.Response) -> float | None:
    """Seconds to wait from ``Retry-After`` or an epoch ``X-RateLimit-Reset`` header."""
    retry_after = response.headers.get("Retry-After")
    if retry_after:
        try:
            return max(float(retry_after), 0.0)
        except ValueError:
            pass
    reset = response.headers.get("X-RateLimit-Reset") or response.headers.get("RateLimit-Reset")
    if reset:
        try:
            value = float(reset)
        except ValueError:
            return None
        # Epoch seconds (GitHub, GitLab) vs. relative seconds
        return max(value - time.time(), 0.0) if value > 1_000_000_000 else value
    return None
