"""Background cleanup task for the in-memory limiter.

The record store only shrinks when swept, so a dead sweeper means unbounded
growth. The loop therefore logs and survives failures of a single pass, and
the owning application starts/stops it from its lifespan.
"""

from __future__ import annotations

import asyncio
import logging

from app.adapters.rate_limit.base import AbstractRateLimiter, SweepReport

logger = logging.getLogger(__name__)


class CleanupSweeper:
    """Run ``limiter.sweep()`` every ``interval_seconds`` on the event loop."""

    def __init__(self, limiter: AbstractRateLimiter, *, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._limiter = limiter
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self.passes = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the sweep loop on the running event loop (idempotent)."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="rate-limit-sweeper")
        logger.info("rate_limit.sweeper_started", extra={"interval_s": self._interval})

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("rate_limit.sweeper_stopped", extra={"passes": self.passes})

    def run_once(self) -> SweepReport | None:
        """Run a single sweep pass, logging instead of raising on failure."""
        try:
            report = self._limiter.sweep()
        except Exception:
            self.failures += 1
            logger.exception("rate_limit.sweep_failed", extra={"failures": self.failures})
            return None
        self.passes += 1
        return report

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.run_once()
