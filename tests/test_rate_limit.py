"""Tests for the rate limit coordinator and the bounded retry combinator."""

import asyncio

import pydantic
import pytest

from scmsync.config import Settings
from scmsync.errors.exceptions import (
    PlatformAuthenticationError,
    RateLimitedError,
    TransientPlatformError,
)
from scmsync.ratelimit.coordinator import RateLimitCoordinator, credential_fingerprint
from scmsync.ratelimit.retry import exponential_backoff, with_retry


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def _coordinator(clock, budget: int = 3, **overrides) -> RateLimitCoordinator:
    settings = Settings(
        rate_limit_window_seconds=60.0,
        rate_limit_requests_per_window={"github": budget},
        **overrides,
    )
    return RateLimitCoordinator(settings, clock=clock, sleep=clock.sleep)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class TestRateLimitCoordinator:
    def test_zero_budget_is_rejected(self):
        with pytest.raises(pydantic.ValidationError, match="github"):
            Settings(rate_limit_requests_per_window={"github": 0, "gitlab": 300})

    async def test_requests_within_budget_do_not_wait(self, clock):
        coordinator = _coordinator(clock)
        for _ in range(3):
            assert await coordinator.check_rate_limit("github", "tok") == 0.0
        assert clock.sleeps == []

    async def test_full_window_waits_until_oldest_request_expires(self, clock):
        coordinator = _coordinator(clock)
        for _ in range(3):
            await coordinator.check_rate_limit("github", "tok")

        waited = await coordinator.check_rate_limit("github", "tok")

        assert waited == pytest.approx(60.0)
        assert clock.sleeps == [pytest.approx(60.0)]
        assert coordinator.status("github", "tok").used == 1

    async def test_credentials_have_separate_budgets(self, clock):
        coordinator = _coordinator(clock)
        for _ in range(3):
            await coordinator.check_rate_limit("github", "tok-a")
        assert await coordinator.check_rate_limit("github", "tok-b") == 0.0

    async def test_unknown_platform_uses_default_budget(self, clock):
        coordinator = _coordinator(clock)
        for _ in range(60):
            await coordinator.check_rate_limit("gitlab", "tok")
        assert clock.sleeps == []
        assert coordinator.status("gitlab", "tok").remaining == 0

    async def test_concurrent_callers_share_one_window(self, clock):
        coordinator = _coordinator(clock, budget=1)
        await asyncio.gather(
            coordinator.check_rate_limit("github", "tok"),
            coordinator.check_rate_limit("github", "tok"),
        )

        assert clock.sleeps == [pytest.approx(60.0)]

    async def test_deferred_cooldown_blocks_next_request(self, clock):
        coordinator = _coordinator(clock)
        coordinator.defer("github", "tok", 30)

        assert coordinator.status("github", "tok").cooldown_seconds == pytest.approx(30.0)
        waited = await coordinator.check_rate_limit("github", "tok")

        assert waited == pytest.approx(30.0)

    async def test_cooldown_is_capped_by_max_retry_wait(self, clock):
        coordinator = _coordinator(clock, max_retry_wait_seconds=10.0)
        coordinator.defer("github", "tok", 3600)
        assert await coordinator.check_rate_limit("github", "tok") == pytest.approx(10.0)

    async def test_disabled_coordinator_never_waits(self, clock):
        coordinator = _coordinator(clock, rate_limit_enabled=False)
        coordinator.defer("github", "tok", 30)
        for _ in range(10):
            assert await coordinator.check_rate_limit("github", "tok") == 0.0
        assert clock.sleeps == []

    def test_fingerprint_never_exposes_secret(self):
        fingerprint = credential_fingerprint("ghp_supersecret")
        assert "supersecret" not in fingerprint
        assert len(fingerprint) == 16
        assert credential_fingerprint(None) == "anonymous"


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestWithRetry:
    async def test_transient_failures_are_retried_with_backoff(self, clock):
        outcomes = [TransientPlatformError("github", "502"), TransientPlatformError("github", "503"), "ok"]

        async def call():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = await with_retry(
            call, max_attempts=3, delay_for=exponential_backoff(1.0, 300.0), sleep=clock.sleep,
        )

        assert result == "ok"
        assert clock.sleeps == [1.0, 2.0]

    async def test_gives_up_after_max_attempts(self, clock):
        attempts = 0

        async def call():
            nonlocal attempts
            attempts += 1
            raise TransientPlatformError("gitlab", "timeout")

        with pytest.raises(TransientPlatformError):
            await with_retry(
                call, max_attempts=3, delay_for=exponential_backoff(1.0, 300.0), sleep=clock.sleep,
            )
        assert attempts == 3
        assert len(clock.sleeps) == 2

    async def test_non_transient_errors_are_not_retried(self, clock):
        attempts = 0

        async def call():
            nonlocal attempts
            attempts += 1
            raise PlatformAuthenticationError("github", "bad token", 401)

        with pytest.raises(PlatformAuthenticationError):
            await with_retry(
                call, max_attempts=5, delay_for=exponential_backoff(1.0, 300.0), sleep=clock.sleep,
            )
        assert attempts == 1

    def test_retry_after_hint_wins_and_is_capped(self):
        delay_for = exponential_backoff(1.0, 120.0)
        assert delay_for(RateLimitedError("github", "429", 429, retry_after=7), 1) == 7.0
        assert delay_for(RateLimitedError("github", "429", 429, retry_after=900), 1) == 120.0
        assert delay_for(TransientPlatformError("github", "500"), 4) == 8.0
