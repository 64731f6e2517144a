"""Rate limiting dependency for FastAPI routes.

This module wires the throttling engine into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on ``rate_limit("<policy>")`` only.
- Injected state: the limiter and policy catalog are built once in
  ``create_app()`` and read from ``app.state``; there is no module-level
  singleton, so tests get isolated instances.
- Safe defaults: switched off entirely with RATE_LIMIT_ENABLED=false.

HTTP mapping:
- Denied → 429 with Retry-After (seconds), X-RateLimit-Limit,
  X-RateLimit-Remaining: 0 and X-RateLimit-Reset when the window is known.
- Allowed → X-RateLimit-Limit, X-RateLimit-Remaining, X-RateLimit-Reset.
"""

from __future__ import annotations

import logging
import math
from typing import Awaitable, Callable

from fastapi import HTTPException, Request, Response, status

from app.adapters.rate_limit.base import AbstractRateLimiter, Decision
from app.adapters.rate_limit.identifier import (
    RequestMeta,
    derive_identifier,
    hash_identifier,
    scoped_identifier,
)
from app.adapters.rate_limit.policies import DEFAULT_POLICIES, PolicyCatalog
from app.core.config import settings
from app.core.errors import ValidationAppError

logger = logging.getLogger(__name__)

KNOWN_POLICY_NAMES = frozenset(policy.name for policy in DEFAULT_POLICIES)


def get_rate_limiter(request: Request) -> AbstractRateLimiter:
    """Return the limiter attached to the application at startup."""
    return request.app.state.rate_limiter


def get_policy_catalog(request: Request) -> PolicyCatalog:
    return request.app.state.policy_catalog


def request_meta_from_request(request: Request) -> RequestMeta:
    """Collect the origin metadata used for identifier derivation."""
    headers = request.headers
    return RequestMeta(
        forwarded_for=headers.get("x-forwarded-for"),
        real_ip=headers.get("x-real-ip"),
        cf_connecting_ip=headers.get("cf-connecting-ip"),
        peer=request.client.host if request.client else None,
        user_agent=headers.get("user-agent"),
    )


def _ms_to_epoch_seconds(value_ms: int) -> int:
    return int(math.ceil(value_ms / 1000))


def retry_after_seconds(decision: Decision, now_ms: int) -> int:
    """Whole seconds a denied client should wait (never negative)."""
    target = decision.retry_after if decision.retry_after is not None else decision.reset_at
    if target is None:
        return 0
    return max(0, int(math.ceil((target - now_ms) / 1000)))


def build_denied_headers(decision: Decision, now_ms: int) -> dict[str, str]:
    headers = {
        "Retry-After": str(retry_after_seconds(decision, now_ms)),
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": "0",
    }
    if decision.reset_at is not None:
        headers["X-RateLimit-Reset"] = str(_ms_to_epoch_seconds(decision.reset_at))
    return headers


def build_allowed_headers(decision: Decision) -> dict[str, str]:
    headers = {"X-RateLimit-Limit": str(decision.limit)}
    if decision.remaining is not None:
        headers["X-RateLimit-Remaining"] = str(decision.remaining)
    if decision.reset_at is not None:
        headers["X-RateLimit-Reset"] = str(_ms_to_epoch_seconds(decision.reset_at))
    return headers


def rate_limit(policy_name: str) -> Callable[[Request, Response], Awaitable[Decision | None]]:
    """Build a FastAPI dependency enforcing the named policy.

    Usage:
        @router.post("/contact", dependencies=[Depends(rate_limit("contact"))])

    Args:
        policy_name: Name of a policy in the catalog.

    Returns:
        Async dependency that returns the Decision (or None when disabled).

    Raises:
        ValidationAppError: At wiring time, for an unknown policy name.
    """
    if policy_name not in KNOWN_POLICY_NAMES:
        raise ValidationAppError(
            code="unknown_rate_limit_policy",
            message=f"Unknown rate limit policy: {policy_name}",
            details={"policy": policy_name, "available_policies": sorted(KNOWN_POLICY_NAMES)},
        )

    async def enforce_rate_limit(request: Request, response: Response) -> Decision | None:
        """Consume one attempt for the caller; raise HTTP 429 when denied.

        Raises:
            HTTPException: 429 Too Many Requests when throttled.
        """
        if not settings.rate_limit.enabled:
            return None

        limiter = get_rate_limiter(request)
        policy = get_policy_catalog(request).get(policy_name)
        identifier = scoped_identifier(
            policy.name, derive_identifier(request_meta_from_request(request))
        )
        key_hash = hash_identifier(identifier)

        decision = limiter.evaluate(identifier, policy)
        request.state.rate_limit = decision
        include_headers = settings.rate_limit.include_headers

        if decision.allowed:
            logger.info(
                "rate_limit.allowed",
                extra={
                    "policy": policy.name,
                    "identifier_hash": key_hash,
                    "limit": decision.limit,
                    "remaining": decision.remaining,
                    "reason": decision.reason,
                },
            )
            if include_headers:
                response.headers.update(build_allowed_headers(decision))
            return decision

        now_ms = limiter.now_ms()
        logger.warning(
            "rate_limit.denied",
            extra={
                "policy": policy.name,
                "identifier_hash": key_hash,
                "limit": decision.limit,
                "blocked": decision.blocked,
                "reason": decision.reason,
                "retry_after_s": retry_after_seconds(decision, now_ms),
            },
        )

        headers = build_denied_headers(decision, now_ms)
        if not include_headers:
            # Retry-After is part of every 429; only the X-RateLimit-* set is optional.
            headers = {"Retry-After": headers["Retry-After"]}

        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Try again later.",
            headers=headers,
        )

    enforce_rate_limit.__name__ = f"enforce_{policy_name}_rate_limit"
    return enforce_rate_limit
