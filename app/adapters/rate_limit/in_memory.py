"""In-memory fixed-window rate limiter with progressive penalties.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: records live in a fixed number of shards, each guarded by its
  own lock, so evaluations for different identifiers rarely contend.
- Bounded: each shard holds at most ``max_records // shard_count`` records;
  the cleanup sweep (see sweeper.py) keeps the table small in steady state.
"""

from __future__ import annotations

import logging
import threading
import time
import zlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from app.adapters.rate_limit.base import (
    AbstractRateLimiter,
    ClientUsage,
    Decision,
    RateLimitAnalytics,
    RecordSnapshot,
    RequestTrends,
    SweepReport,
)
from app.adapters.rate_limit.identifier import UNKNOWN, unscoped_identifier
from app.adapters.rate_limit.policies import (
    DEFAULT_MAX_PENALTY_LEVEL,
    RateLimitPolicy,
    block_duration_ms,
)

logger = logging.getLogger(__name__)

DENYLIST_BLOCK_MS = 24 * 60 * 60 * 1000
TOP_CLIENTS = 10
ANONYMIZED_PREFIX = 20

REASON_ALLOWLISTED = "allowlisted"
REASON_DENYLISTED = "denylisted"
REASON_PENALTY_BLOCK = "penalty_block"
REASON_LIMIT_EXCEEDED = "rate_limit_exceeded"


@dataclass
class _Record:
    count: int
    window_reset_at: int
    last_attempt_at: int
    created_at: int
    penalty_level: int = 0
    # Block base, cap and window length of the policy that last touched this
    # record; the sweep has no policy in hand and needs them to decay penalties.
    base_block_ms: int = 0
    max_penalty_level: int = DEFAULT_MAX_PENALTY_LEVEL
    penalty_since: int = 0
    window_ms: int = 0
    window_violated: bool = False
    total_requests: int = 1

    def snapshot(self) -> RecordSnapshot:
        return RecordSnapshot(
            count=self.count,
            window_reset_at=self.window_reset_at,
            last_attempt_at=self.last_attempt_at,
            penalty_level=self.penalty_level,
            created_at=self.created_at,
            total_requests=self.total_requests,
        )


class _Shard:
    __slots__ = ("lock", "records")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.records: dict[str, _Record] = {}


class InMemoryPenaltyRateLimiter(AbstractRateLimiter):
    """Fixed-window limiter that escalates repeat offenders.

    Each identifier gets a window of ``policy.window_ms`` in which at most
    ``policy.max_attempts`` requests pass. Exhausting a window raises the
    identifier's penalty level; with ``progressive_penalty`` the client is
    then blocked for ``base_block_ms * 2 ** (level - 1)``.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        each worker will enforce its own independent limits.
    """

    def __init__(
        self,
        *,
        shard_count: int = 16,
        max_records: int = 10000,
        eviction_target_ratio: float = 0.8,
        idle_expiry_ms: int = 24 * 60 * 60 * 1000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            shard_count: Number of independently locked shards.
            max_records: Upper bound on tracked identifiers.
            eviction_target_ratio: Fraction of a full shard kept after eviction.
            idle_expiry_ms: Records idle longer than this are swept once any
                penalty block they carry has run out.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If any sizing argument is invalid.
        """
        if shard_count < 1:
            raise ValueError("shard_count must be >= 1")
        if max_records < 1:
            raise ValueError("max_records must be >= 1")
        if not 0 < eviction_target_ratio <= 1:
            raise ValueError("eviction_target_ratio must be in (0, 1]")
        if idle_expiry_ms < 1:
            raise ValueError("idle_expiry_ms must be >= 1")

        self._shards = [_Shard() for _ in range(shard_count)]
        self._shard_capacity = max(1, max_records // shard_count)
        # Always free at least one slot when a shard is full.
        self._eviction_target = min(
            self._shard_capacity - 1, int(self._shard_capacity * eviction_target_ratio)
        )
        self._idle_expiry_ms = idle_expiry_ms
        self._clock = clock

        self._lists_lock = threading.Lock()
        self._allowlist: set[str] = set()
        self._denylist: set[str] = set()

        self._stats_lock = threading.Lock()
        self._total_requests = 0
        self._blocked_requests = 0
        self._hourly = [0] * 24
        self._daily = [0] * 7

    def now_ms(self) -> int:
        return int(round(self._clock() * 1000))

    def _shard_for(self, identifier: str) -> _Shard:
        index = zlib.crc32(identifier.encode("utf-8", "replace")) % len(self._shards)
        return self._shards[index]

    def _count_request(self, now: int, *, blocked: bool) -> None:
        moment = datetime.fromtimestamp(now / 1000, tz=timezone.utc)
        with self._stats_lock:
            self._total_requests += 1
            if blocked:
                self._blocked_requests += 1
            self._hourly[moment.hour] += 1
            self._daily[moment.weekday()] += 1

    def evaluate(self, identifier: str, policy: RateLimitPolicy) -> Decision:
        """Count one attempt and decide whether it may proceed.

        Order of checks: deny/allow lists, first sighting, active penalty
        block, window rollover, ceiling, then a plain allowed attempt. A
        request landing exactly on ``window_reset_at`` opens a new window.

        Args:
            identifier: Throttling key (see identifier.derive_identifier).
            policy: Policy of the route class being gated.

        Returns:
            Decision describing the outcome.
        """
        identifier = identifier or UNKNOWN
        now = self.now_ms()

        # Lists match either the exact key or the client part of a policy-scoped key.
        list_keys = {identifier, unscoped_identifier(identifier)}
        with self._lists_lock:
            denied = not self._denylist.isdisjoint(list_keys)
            allowlisted = not denied and not self._allowlist.isdisjoint(list_keys)

        if denied:
            self._count_request(now, blocked=True)
            return Decision(
                allowed=False,
                limit=policy.max_attempts,
                remaining=0,
                retry_after=now + DENYLIST_BLOCK_MS,
                blocked=True,
                reason=REASON_DENYLISTED,
            )
        if allowlisted:
            self._count_request(now, blocked=False)
            return Decision(allowed=True, limit=policy.max_attempts, reason=REASON_ALLOWLISTED)

        shard = self._shard_for(identifier)
        with shard.lock:
            decision = self._evaluate_locked(shard, identifier, policy, now)

        self._count_request(now, blocked=not decision.allowed)
        return decision

    def _evaluate_locked(
        self, shard: _Shard, identifier: str, policy: RateLimitPolicy, now: int
    ) -> Decision:
        record = shard.records.get(identifier)

        if record is None:
            if len(shard.records) >= self._shard_capacity:
                self._evict_locked(shard, now)
            shard.records[identifier] = _Record(
                count=1,
                window_reset_at=now + policy.window_ms,
                last_attempt_at=now,
                created_at=now,
                window_ms=policy.window_ms,
            )
            return Decision(
                allowed=True,
                limit=policy.max_attempts,
                remaining=policy.max_attempts - 1,
                reset_at=now + policy.window_ms,
            )

        if policy.progressive_penalty and record.penalty_level > 0:
            block_until = record.last_attempt_at + policy.block_duration_ms(record.penalty_level)
            if now < block_until:
                return Decision(
                    allowed=False,
                    limit=policy.max_attempts,
                    remaining=0,
                    reset_at=record.window_reset_at,
                    retry_after=block_until,
                    blocked=True,
                    reason=REASON_PENALTY_BLOCK,
                )

        record.total_requests += 1

        if now >= record.window_reset_at:
            if policy.penalty_decay and not record.window_violated and record.penalty_level > 0:
                record.penalty_level -= 1
                record.penalty_since = now
            record.count = 1
            record.window_reset_at = now + policy.window_ms
            record.window_ms = policy.window_ms
            record.last_attempt_at = now
            record.window_violated = False
            return Decision(
                allowed=True,
                limit=policy.max_attempts,
                remaining=policy.max_attempts - 1,
                reset_at=record.window_reset_at,
            )

        if record.count >= policy.max_attempts:
            record.penalty_level = min(record.penalty_level + 1, policy.max_penalty_level)
            record.last_attempt_at = now
            record.penalty_since = now
            record.window_violated = True
            record.base_block_ms = policy.base_block_ms if policy.progressive_penalty else 0
            record.max_penalty_level = policy.max_penalty_level
            record.window_ms = policy.window_ms
            if policy.progressive_penalty:
                retry_after = now + policy.block_duration_ms(record.penalty_level)
            else:
                retry_after = record.window_reset_at
            return Decision(
                allowed=False,
                limit=policy.max_attempts,
                remaining=0,
                reset_at=record.window_reset_at,
                retry_after=retry_after,
                blocked=policy.progressive_penalty,
                reason=REASON_LIMIT_EXCEEDED,
            )

        record.count += 1
        record.last_attempt_at = now
        return Decision(
            allowed=True,
            limit=policy.max_attempts,
            remaining=policy.max_attempts - record.count,
            reset_at=record.window_reset_at,
        )

    def _evict_locked(self, shard: _Shard, now: int) -> None:
        """Shrink a full shard, dropping the least valuable records first.

        Priority: expired without penalty, expired with penalty, active
        without penalty, active with penalty; oldest first within each group.
        """

        def rank(item: tuple[str, _Record]) -> tuple[int, int, int]:
            record = item[1]
            expired = now > record.window_reset_at
            penalized = record.penalty_level > 0
            group = (0 if expired else 2) + (1 if penalized else 0)
            return group, record.created_at, record.last_attempt_at

        to_remove = len(shard.records) - self._eviction_target
        victims = sorted(shard.records.items(), key=rank)[:to_remove]
        for key, _ in victims:
            del shard.records[key]

        logger.info(
            "rate_limit.evicted",
            extra={"evicted": len(victims), "shard_size": len(shard.records)},
        )

    def clear(self, identifier: str) -> None:
        """Remove the record for ``identifier`` (no-op when absent)."""
        identifier = identifier or UNKNOWN
        shard = self._shard_for(identifier)
        with shard.lock:
            shard.records.pop(identifier, None)

    def status(self, identifier: str) -> RecordSnapshot | None:
        identifier = identifier or UNKNOWN
        shard = self._shard_for(identifier)
        with shard.lock:
            record = shard.records.get(identifier)
            return record.snapshot() if record else None

    def allow(self, identifier: str) -> None:
        """Exempt ``identifier`` from throttling (and lift any deny entry)."""
        with self._lists_lock:
            self._denylist.discard(identifier)
            self._allowlist.add(identifier)

    def deny(self, identifier: str) -> None:
        """Reject every request from ``identifier`` until it is removed."""
        with self._lists_lock:
            self._allowlist.discard(identifier)
            self._denylist.add(identifier)

    def remove_from_lists(self, identifier: str) -> None:
        with self._lists_lock:
            self._allowlist.discard(identifier)
            self._denylist.discard(identifier)

    def lists(self) -> dict[str, list[str]]:
        with self._lists_lock:
            return {"allowlist": sorted(self._allowlist), "denylist": sorted(self._denylist)}

    def sweep(self) -> SweepReport:
        """Drop expired records and decay penalties of quiet clients.

        A record is removed when it has been idle past ``idle_expiry_ms``
        (unless its penalty block is still running) or when its window is
        over and it carries no penalty.

        A penalized record loses one level once the window it was penalized
        in has closed and a further full window went by without attempts,
        and never before its block has run out. Each later level needs
        another such interval, counted from the previous decay. A record
        decayed to zero is removed on a later pass.
        """
        now = self.now_ms()
        removed = 0
        decayed = 0
        remaining = 0

        for shard in self._shards:
            with shard.lock:
                for key, record in list(shard.records.items()):
                    block_ms = block_duration_ms(
                        record.base_block_ms, record.penalty_level, record.max_penalty_level
                    )
                    block_active = now < record.last_attempt_at + block_ms

                    if now - record.last_attempt_at > self._idle_expiry_ms and not block_active:
                        del shard.records[key]
                        removed += 1
                        continue

                    if record.penalty_level == 0:
                        if now > record.window_reset_at:
                            del shard.records[key]
                            removed += 1
                        continue

                    # Any attempt after the window closes rolls it forward, so a
                    # window_reset_at in the past means the client has been quiet.
                    quiet_since = max(record.window_reset_at, record.penalty_since)
                    if not block_active and now >= quiet_since + max(record.window_ms, block_ms):
                        record.penalty_level -= 1
                        record.penalty_since = now
                        decayed += 1
                remaining += len(shard.records)

        report = SweepReport(removed=removed, decayed=decayed, remaining=remaining)
        if removed or decayed:
            logger.debug(
                "rate_limit.sweep",
                extra={"removed": removed, "decayed": decayed, "remaining": remaining},
            )
        return report

    def __len__(self) -> int:
        return sum(len(shard.records) for shard in self._shards)

    def analytics(self) -> RateLimitAnalytics:
        """Aggregate counters plus the busiest clients (identifiers truncated)."""
        usages: list[ClientUsage] = []
        for shard in self._shards:
            with shard.lock:
                usages.extend(
                    ClientUsage(
                        identifier=key[:ANONYMIZED_PREFIX] + "...",
                        requests=record.total_requests,
                        blocked=record.penalty_level > 0,
                    )
                    for key, record in shard.records.items()
                )

        with self._stats_lock:
            total = self._total_requests
            blocked = self._blocked_requests
            trends = RequestTrends(hourly=list(self._hourly), daily=list(self._daily))

        unique = len(usages)
        avg = sum(u.requests for u in usages) / unique if unique else 0.0
        usages.sort(key=lambda u: u.requests, reverse=True)

        return RateLimitAnalytics(
            total_requests=total,
            blocked_requests=blocked,
            unique_clients=unique,
            avg_requests_per_client=avg,
            top_clients=usages[:TOP_CLIENTS],
            trends=trends,
        )
