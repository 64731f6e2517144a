"""Rate limiter interfaces.

The API should depend on this abstraction (not the concrete implementation)
so the in-process store could be swapped without touching the gate.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from app.adapters.rate_limit.policies import RateLimitPolicy


@dataclass(frozen=True)
class Decision:
    """Outcome of a single evaluation.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max attempts per window for the evaluated policy.
        remaining: Attempts left in the current window (None when unknown).
        reset_at: Epoch ms when the current window ends.
        retry_after: Epoch ms after which a denied client may retry.
        blocked: True when the denial is a penalty block.
        reason: Short machine-readable reason for non-standard outcomes.
    """

    allowed: bool
    limit: int
    remaining: int | None = None
    reset_at: int | None = None
    retry_after: int | None = None
    blocked: bool = False
    reason: str | None = None


@dataclass(frozen=True)
class RecordSnapshot:
    """Read-only copy of one identifier's throttling record (times in epoch ms)."""

    count: int
    window_reset_at: int
    last_attempt_at: int
    penalty_level: int
    created_at: int
    total_requests: int


@dataclass(frozen=True)
class SweepReport:
    """Summary of one cleanup pass."""

    removed: int
    decayed: int
    remaining: int


@dataclass(frozen=True)
class ClientUsage:
    identifier: str
    requests: int
    blocked: bool


@dataclass(frozen=True)
class RequestTrends:
    """Evaluations bucketed by UTC hour of day and weekday (Monday is 0)."""

    hourly: list[int] = field(default_factory=lambda: [0] * 24)
    daily: list[int] = field(default_factory=lambda: [0] * 7)


@dataclass(frozen=True)
class RateLimitAnalytics:
    """Aggregate counters since the limiter was created.

    Identifiers in ``top_clients`` are truncated so the payload is safe to
    expose to operational tooling.
    """

    total_requests: int
    blocked_requests: int
    unique_clients: int
    avg_requests_per_client: float
    top_clients: list[ClientUsage] = field(default_factory=list)
    trends: RequestTrends = field(default_factory=RequestTrends)


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    def __len__(self) -> int:
        """Number of tracked identifiers."""
        raise NotImplementedError

    def now_ms(self) -> int:
        """Current time in epoch milliseconds, as seen by this limiter."""
        return int(time.time() * 1000)

    @abstractmethod
    def evaluate(self, identifier: str, policy: RateLimitPolicy) -> Decision:
        """Count one attempt for ``identifier`` under ``policy`` and decide.

        Never raises for any identifier value.
        """
        raise NotImplementedError

    @abstractmethod
    def clear(self, identifier: str) -> None:
        """Forget everything about ``identifier``."""
        raise NotImplementedError

    @abstractmethod
    def status(self, identifier: str) -> RecordSnapshot | None:
        """Return a snapshot of the record for ``identifier`` if tracked."""
        raise NotImplementedError

    @abstractmethod
    def sweep(self) -> SweepReport:
        """Drop expired records and decay elapsed penalties."""
        raise NotImplementedError

    @abstractmethod
    def analytics(self) -> RateLimitAnalytics:
        raise NotImplementedError

    @abstractmethod
    def allow(self, identifier: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def deny(self, identifier: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove_from_lists(self, identifier: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def lists(self) -> dict[str, list[str]]:
        """Current allow/deny list contents."""
        raise NotImplementedError

    def export_metrics(self) -> dict:
        """Analytics snapshot with a timestamp, for monitoring exports."""
        analytics = self.analytics()
        return {
            "timestamp": self.now_ms(),
            "active_clients": analytics.unique_clients,
            "metrics": analytics,
        }
