"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before any app import so settings pick
them up.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_ADMIN_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_ADMIN_API_KEYS", "test-admin-key-123,test-admin-key-456")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("RATE_LIMIT_SWEEP_INTERVAL_SECONDS", "300")

import pytest
from fastapi.testclient import TestClient

from app.adapters.rate_limit.in_memory import InMemoryPenaltyRateLimiter
from app.adapters.rate_limit.policies import RateLimitPolicy, build_policy_catalog
from app.core.app_factory import create_app


class FakeClock:
    """Deterministic clock (UNIX seconds) used to drive window arithmetic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance_ms(self, ms: float) -> None:
        self.current += ms / 1000

    @property
    def now_ms(self) -> int:
        return int(round(self.current * 1000))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> InMemoryPenaltyRateLimiter:
    return InMemoryPenaltyRateLimiter(clock=clock)


@pytest.fixture
def penalty_policy() -> RateLimitPolicy:
    """Small progressive policy: 3 attempts per second, 1s base block."""
    return RateLimitPolicy(
        name="test",
        window_ms=1000,
        max_attempts=3,
        progressive_penalty=True,
        base_block_ms=1000,
    )


@pytest.fixture
def plain_policy() -> RateLimitPolicy:
    """Fixed-window policy without penalties."""
    return RateLimitPolicy(name="plain", window_ms=1000, max_attempts=3)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-API-Key": "test-admin-key-123"}


@pytest.fixture
def client(limiter: InMemoryPenaltyRateLimiter):
    """App wired to the fake-clock limiter, with its lifespan running."""
    app = create_app(
        limiter=limiter,
        policy_catalog=build_policy_catalog({"contact": {"max_attempts": 2}}),
    )
    with TestClient(app) as test_client:
        yield test_client
