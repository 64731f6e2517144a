"""Client identifier derivation.

An identifier is ``<address>:<agent digest>``: two browsers behind the same
NAT are throttled independently, while one browser keeps a stable key across
requests. Derivation never fails; missing inputs become ``unknown``.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

UNKNOWN = "unknown"
AGENT_DIGEST_LENGTH = 8


@dataclass(frozen=True)
class RequestMeta:
    """Network/origin metadata of an inbound request.

    Attributes:
        forwarded_for: Raw ``X-Forwarded-For`` value (comma-separated chain).
        real_ip: ``X-Real-IP`` header.
        cf_connecting_ip: ``CF-Connecting-IP`` header.
        peer: Direct peer host of the connection.
        user_agent: Declared ``User-Agent``.
    """

    forwarded_for: str | None = None
    real_ip: str | None = None
    cf_connecting_ip: str | None = None
    peer: str | None = None
    user_agent: str | None = None


def _first_forwarded(value: str | None) -> str | None:
    if not value:
        return None
    for hop in value.split(","):
        hop = hop.strip()
        if hop:
            return hop
    return None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def resolve_address(meta: RequestMeta) -> str:
    """Pick the apparent client address, falling back to ``unknown``."""
    return (
        _first_forwarded(meta.forwarded_for)
        or _clean(meta.real_ip)
        or _clean(meta.cf_connecting_ip)
        or _clean(meta.peer)
        or UNKNOWN
    )


def agent_digest(user_agent: str | None) -> str:
    """Short, fixed-length fingerprint of the user agent (not a security hash)."""
    agent = _clean(user_agent) or UNKNOWN
    return hashlib.sha256(agent.encode("utf-8", "replace")).hexdigest()[:AGENT_DIGEST_LENGTH]


def derive_identifier(meta: RequestMeta) -> str:
    """Build the throttling key for a request.

    Examples:
        >>> derive_identifier(RequestMeta(forwarded_for="203.0.113.7, 10.0.0.1")).split(":")[0]
        '203.0.113.7'
        >>> derive_identifier(RequestMeta()).startswith("unknown:")
        True
    """
    return f"{resolve_address(meta)}:{agent_digest(meta.user_agent)}"


def hash_identifier(identifier: str) -> str:
    """Hash an identifier for logging without exposing client addresses."""
    return hashlib.sha256(identifier.encode()).hexdigest()[:16]


def scoped_identifier(policy_name: str, identifier: str) -> str:
    """Namespace an identifier per policy so route classes keep separate budgets."""
    return f"{policy_name}|{identifier}"


def unscoped_identifier(identifier: str) -> str:
    """Strip the policy namespace added by scoped_identifier, if any."""
    _, sep, rest = identifier.partition("|")
    return rest if sep else identifier
