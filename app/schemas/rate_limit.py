"""Pydantic schemas for the rate limit admin endpoints."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class RecordStatusResponse(BaseModel):
    """Snapshot of one client's throttling record (times in epoch ms)."""

    identifier: str = Field(..., description="Client identifier as derived by the gate.")
    policy: str = Field(..., description="Policy namespace the record belongs to.")
    count: int = Field(..., description="Attempts counted in the current window.")
    window_reset_at: int = Field(..., description="Epoch ms when the window ends.")
    last_attempt_at: int = Field(..., description="Epoch ms of the latest attempt.")
    penalty_level: int = Field(..., description="Consecutive violations driving backoff.")
    created_at: int = Field(..., description="Epoch ms when the record was created.")
    total_requests: int = Field(..., description="Attempts seen since creation.")


class ClientUsageResponse(BaseModel):
    identifier: str = Field(..., description="Truncated identifier.")
    requests: int
    blocked: bool


class RequestTrendsResponse(BaseModel):
    hourly: List[int] = Field(..., description="Evaluations per UTC hour of day (0-23).")
    daily: List[int] = Field(..., description="Evaluations per weekday, Monday first.")


class RateLimitAnalyticsResponse(BaseModel):
    """Aggregate limiter counters."""

    total_requests: int
    blocked_requests: int
    unique_clients: int
    avg_requests_per_client: float
    top_clients: List[ClientUsageResponse] = Field(default_factory=list)
    trends: RequestTrendsResponse


class RateLimitMetricsResponse(BaseModel):
    timestamp: int = Field(..., description="Epoch ms when the snapshot was taken.")
    active_clients: int
    metrics: RateLimitAnalyticsResponse


class IdentifierRequest(BaseModel):
    identifier: str = Field(..., min_length=1, description="Client identifier.")


class ListsResponse(BaseModel):
    allowlist: List[str] = Field(default_factory=list)
    denylist: List[str] = Field(default_factory=list)


class SweepResponse(BaseModel):
    removed: int
    decayed: int
    remaining: int


class PolicyResponse(BaseModel):
    name: str
    window_ms: int
    max_attempts: int
    progressive_penalty: bool
    base_block_ms: int
    max_penalty_level: int
    penalty_decay: bool
