"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) to
improve testability and separation of concerns compared to a monolithic main.

The throttling engine is built here once per app and shared through
``app.state``: the gate reads ``rate_limiter``/``policy_catalog`` and the
lifespan owns the ``sweeper`` task.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.adapters.rate_limit.base import AbstractRateLimiter
from app.adapters.rate_limit.in_memory import InMemoryPenaltyRateLimiter
from app.adapters.rate_limit.policies import PolicyCatalog, build_policy_catalog
from app.adapters.rate_limit.sweeper import CleanupSweeper
from app.api.routes import admin_router, health_router, public_router
from app.core.config import RateLimitSettings, settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations

logger = logging.getLogger(__name__)


def build_rate_limiter(cfg: RateLimitSettings) -> InMemoryPenaltyRateLimiter:
    """Construct the in-memory limiter from settings."""
    return InMemoryPenaltyRateLimiter(
        shard_count=cfg.shard_count,
        max_records=cfg.max_records,
        eviction_target_ratio=cfg.eviction_target_ratio,
        idle_expiry_ms=cfg.idle_expiry_seconds * 1000,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the cleanup sweeper for as long as the app serves requests."""
    sweeper: CleanupSweeper = app.state.sweeper
    sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()


def create_app(
    *,
    limiter: AbstractRateLimiter | None = None,
    policy_catalog: PolicyCatalog | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        limiter: Optional pre-built limiter (tests inject one with a fake clock).
        policy_catalog: Optional catalog; defaults to presets plus overrides.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    cfg = settings.rate_limit

    app = FastAPI(
        title="Throttle Gate",
        description=(
            "Public contact, content, telemetry and upload endpoints protected by "
            "an adaptive fixed-window rate limiter with progressive penalties. "
            "Admin endpoints (X-API-Key) inspect and reset client records."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )

    # Both define __len__, so an empty instance is falsy.
    if limiter is None:
        limiter = build_rate_limiter(cfg)
    if policy_catalog is None:
        policy_catalog = build_policy_catalog(
            cfg.policy_overrides, max_penalty_level=cfg.max_penalty_level
        )
    app.state.rate_limiter = limiter
    app.state.policy_catalog = policy_catalog
    app.state.sweeper = CleanupSweeper(
        app.state.rate_limiter, interval_seconds=cfg.sweep_interval_seconds
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(public_router, prefix="/v1")
    app.include_router(admin_router)
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app)

    logger.info(
        "app.created",
        extra={
            "rate_limit_enabled": cfg.enabled,
            "policies": app.state.policy_catalog.names(),
            "sweep_interval_s": cfg.sweep_interval_seconds,
        },
    )
    return app
