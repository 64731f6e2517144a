"""Named throttling policies for each endpoint class.

Policies are immutable and defined once per route class. Routes pick a
policy by name; the limiter itself knows nothing about routes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from typing import Any, Iterator, Mapping

from app.core.errors import ValidationAppError

logger = logging.getLogger(__name__)

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS

DEFAULT_MAX_PENALTY_LEVEL = 8


@dataclass(frozen=True)
class RateLimitPolicy:
    """Fixed-window policy with optional progressive penalties.

    Attributes:
        name: Policy name (e.g. ``contact``).
        window_ms: Length of one counting window in milliseconds.
        max_attempts: Allowed attempts within a window.
        progressive_penalty: Block violators with exponential backoff.
        base_block_ms: First block length; doubles per consecutive violation.
        max_penalty_level: Cap on doublings, bounding the longest block to
            ``base_block_ms * 2 ** (max_penalty_level - 1)``.
        penalty_decay: Drop one penalty level when a window rolls over
            without a violation.
    """

    name: str
    window_ms: int
    max_attempts: int
    progressive_penalty: bool = False
    base_block_ms: int = 0
    max_penalty_level: int = DEFAULT_MAX_PENALTY_LEVEL
    penalty_decay: bool = True

    def __post_init__(self) -> None:
        _require_min(self.name, "window_ms", self.window_ms, 1)
        _require_min(self.name, "max_attempts", self.max_attempts, 1)
        _require_min(self.name, "base_block_ms", self.base_block_ms, 0)
        _require_min(self.name, "max_penalty_level", self.max_penalty_level, 1)

    def block_duration_ms(self, penalty_level: int) -> int:
        """Block length for a penalty level (0 when there is no penalty)."""
        return block_duration_ms(self.base_block_ms, penalty_level, self.max_penalty_level)


def block_duration_ms(base_block_ms: int, penalty_level: int, max_level: int) -> int:
    """Compute ``base * 2 ** (level - 1)`` with the level capped at ``max_level``."""
    if penalty_level <= 0:
        return 0
    level = min(penalty_level, max_level)
    return base_block_ms * (2 ** (level - 1))


def _require_min(policy: str, field_name: str, value: int, minimum: int) -> None:
    if value < minimum:
        raise ValidationAppError(
            code="invalid_rate_limit_policy",
            message=f"{field_name} must be >= {minimum}",
            details={
                "policy": policy,
                "field": field_name,
                "min_value": minimum,
                "actual_value": value,
            },
        )


CONTACT = RateLimitPolicy(
    name="contact",
    window_ms=HOUR_MS,
    max_attempts=3,
    progressive_penalty=True,
    base_block_ms=5 * MINUTE_MS,
)

READ_API = RateLimitPolicy(
    name="read_api",
    window_ms=15 * MINUTE_MS,
    max_attempts=100,
)

UPLOAD = RateLimitPolicy(
    name="upload",
    window_ms=HOUR_MS,
    max_attempts=10,
    progressive_penalty=True,
    base_block_ms=5 * MINUTE_MS,
)

AUTH = RateLimitPolicy(
    name="auth",
    window_ms=15 * MINUTE_MS,
    max_attempts=5,
    progressive_penalty=True,
    base_block_ms=10 * MINUTE_MS,
)

TELEMETRY = RateLimitPolicy(
    name="telemetry",
    window_ms=MINUTE_MS,
    max_attempts=60,
)

DEFAULT_POLICIES: tuple[RateLimitPolicy, ...] = (CONTACT, READ_API, UPLOAD, AUTH, TELEMETRY)


class PolicyCatalog:
    """Read-only lookup of policies by name."""

    def __init__(self, policies: Mapping[str, RateLimitPolicy]) -> None:
        self._policies = dict(policies)

    def get(self, name: str) -> RateLimitPolicy:
        """Return the policy registered under ``name``.

        Raises:
            ValidationAppError: If no such policy exists.
        """
        policy = self._policies.get(name)
        if policy is None:
            raise ValidationAppError(
                code="unknown_rate_limit_policy",
                message=f"Unknown rate limit policy: {name}",
                details={"policy": name, "available_policies": self.names()},
            )
        return policy

    def names(self) -> list[str]:
        return sorted(self._policies)

    def __contains__(self, name: object) -> bool:
        return name in self._policies

    def __iter__(self) -> Iterator[RateLimitPolicy]:
        return iter(self._policies.values())

    def __len__(self) -> int:
        return len(self._policies)


_OVERRIDABLE_FIELDS = {f.name for f in fields(RateLimitPolicy)} - {"name"}


def build_policy_catalog(
    overrides: Mapping[str, Mapping[str, Any]] | None = None,
    *,
    max_penalty_level: int | None = None,
    base: tuple[RateLimitPolicy, ...] = DEFAULT_POLICIES,
) -> PolicyCatalog:
    """Build the catalog from the compiled-in presets plus config overrides.

    Args:
        overrides: Mapping of policy name to field overrides, e.g.
            ``{"contact": {"max_attempts": 5}}``.
        max_penalty_level: Default penalty cap applied to every preset
            (an explicit per-policy override still wins).
        base: Presets to start from.

    Returns:
        PolicyCatalog with validated policies.

    Raises:
        ValidationAppError: On unknown policy names, unknown fields or
            invalid values.
    """
    policies = {policy.name: policy for policy in base}

    if max_penalty_level is not None:
        policies = {
            name: replace(policy, max_penalty_level=max_penalty_level)
            for name, policy in policies.items()
        }

    for name, changes in (overrides or {}).items():
        if name not in policies:
            raise ValidationAppError(
                code="unknown_rate_limit_policy",
                message=f"Cannot override unknown rate limit policy: {name}",
                details={"policy": name, "available_policies": sorted(policies)},
            )
        unknown = set(changes) - _OVERRIDABLE_FIELDS
        if unknown:
            raise ValidationAppError(
                code="invalid_rate_limit_override",
                message=f"Unknown policy fields: {', '.join(sorted(unknown))}",
                details={"policy": name},
            )
        policies[name] = replace(policies[name], **dict(changes))
        logger.info(
            "rate_limit.policy_overridden",
            extra={"policy": name, "fields": sorted(changes)},
        )

    return PolicyCatalog(policies)
