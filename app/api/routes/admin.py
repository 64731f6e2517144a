"""Operational endpoints for the throttling engine.

Inspect or reset a client's record, manage allow/deny lists, read
analytics, and trigger a sweep on demand. All routes require an admin key.

Records are namespaced per policy, so record-level routes take the
identifier as derived by the gate plus a ``policy`` query parameter.
Reading a record requires it; clearing without it applies to every policy.
"""

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, Response, status

from app.adapters.rate_limit.base import AbstractRateLimiter
from app.adapters.rate_limit.identifier import hash_identifier, scoped_identifier
from app.adapters.rate_limit.policies import PolicyCatalog
from app.core.auth import verify_admin_api_key
from app.core.errors import NotFoundAppError
from app.core.rate_limit import get_policy_catalog, get_rate_limiter
from app.schemas.rate_limit import (
    IdentifierRequest,
    ListsResponse,
    PolicyResponse,
    RateLimitAnalyticsResponse,
    RateLimitMetricsResponse,
    RecordStatusResponse,
    SweepResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin/rate-limit",
    tags=["Admin"],
    dependencies=[Depends(verify_admin_api_key)],
)



@router.get("/policies", response_model=list[PolicyResponse])
def list_policies(catalog: PolicyCatalog = Depends(get_policy_catalog)) -> list[PolicyResponse]:
    return [PolicyResponse(**asdict(policy)) for policy in catalog]


@router.get("/analytics", response_model=RateLimitAnalyticsResponse)
def get_analytics(
    limiter: AbstractRateLimiter = Depends(get_rate_limiter),
) -> RateLimitAnalyticsResponse:
    """Aggregate counters and the busiest clients (identifiers truncated)."""
    return RateLimitAnalyticsResponse(**asdict(limiter.analytics()))


@router.get("/metrics", response_model=RateLimitMetricsResponse)
def get_metrics(
    limiter: AbstractRateLimiter = Depends(get_rate_limiter),
) -> RateLimitMetricsResponse:
    exported = limiter.export_metrics()
    return RateLimitMetricsResponse(
        timestamp=exported["timestamp"],
        active_clients=exported["active_clients"],
        metrics=RateLimitAnalyticsResponse(**asdict(exported["metrics"])),
    )


@router.get("/clients/{identifier}", response_model=RecordStatusResponse)
def get_client_status(
    identifier: str,
    policy: str = Query(..., description="Policy namespace of the record."),
    limiter: AbstractRateLimiter = Depends(get_rate_limiter),
    catalog: PolicyCatalog = Depends(get_policy_catalog),
) -> RecordStatusResponse:
    """Return the throttling record a client holds under one policy.

    The gate keeps a separate record per policy, so ``policy`` is required.

    Raises:
        NotFoundAppError: When the client has no record under ``policy``.
    """
    snapshot = limiter.status(scoped_identifier(catalog.get(policy).name, identifier))
    if snapshot is None:
        raise NotFoundAppError(
            code="rate_limit_record_not_found",
            message="No rate limit record for this client",
            details={"policy": policy},
        )
    return RecordStatusResponse(identifier=identifier, policy=policy, **asdict(snapshot))


@router.delete("/clients/{identifier}", status_code=status.HTTP_204_NO_CONTENT)
def clear_client(
    identifier: str,
    policy: str | None = Query(default=None, description="Clear only this policy's record."),
    limiter: AbstractRateLimiter = Depends(get_rate_limiter),
    catalog: PolicyCatalog = Depends(get_policy_catalog),
) -> Response:
    """Reset a client's throttling history."""
    if policy is not None:
        keys = [scoped_identifier(catalog.get(policy).name, identifier)]
    else:
        keys = [identifier] + [scoped_identifier(p.name, identifier) for p in catalog]

    for key in keys:
        limiter.clear(key)

    logger.info(
        "admin.rate_limit.clear",
        extra={"identifier_hash": hash_identifier(identifier), "policy": policy},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/lists", response_model=ListsResponse)
def get_lists(limiter: AbstractRateLimiter = Depends(get_rate_limiter)) -> ListsResponse:
    return ListsResponse(**limiter.lists())


@router.post("/allowlist", response_model=ListsResponse)
def add_to_allowlist(
    payload: IdentifierRequest,
    limiter: AbstractRateLimiter = Depends(get_rate_limiter),
) -> ListsResponse:
    limiter.allow(payload.identifier)
    logger.info(
        "admin.rate_limit.allowlisted",
        extra={"identifier_hash": hash_identifier(payload.identifier)},
    )
    return ListsResponse(**limiter.lists())


@router.post("/denylist", response_model=ListsResponse)
def add_to_denylist(
    payload: IdentifierRequest,
    limiter: AbstractRateLimiter = Depends(get_rate_limiter),
) -> ListsResponse:
    limiter.deny(payload.identifier)
    logger.warning(
        "admin.rate_limit.denylisted",
        extra={"identifier_hash": hash_identifier(payload.identifier)},
    )
    return ListsResponse(**limiter.lists())


@router.delete("/lists/{identifier}", response_model=ListsResponse)
def remove_from_lists(
    identifier: str,
    limiter: AbstractRateLimiter = Depends(get_rate_limiter),
) -> ListsResponse:
    limiter.remove_from_lists(identifier)
    return ListsResponse(**limiter.lists())


@router.post("/sweep", response_model=SweepResponse)
def run_sweep(limiter: AbstractRateLimiter = Depends(get_rate_limiter)) -> SweepResponse:
    """Run one cleanup pass immediately."""
    return SweepResponse(**asdict(limiter.sweep()))
