"""Pydantic schemas for the public, throttled endpoints.

The handlers behind these routes only acknowledge receipt; delivery,
storage and analytics live in other services.
"""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field


class ContactSubmission(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    subject: str | None = Field(default=None, max_length=200)
    message: str = Field(..., min_length=10, max_length=5000)


class TelemetryEvent(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Event name.")
    properties: Dict[str, Any] = Field(default_factory=dict)


class TelemetryBatch(BaseModel):
    events: List[TelemetryEvent] = Field(..., min_length=1, max_length=100)


class AcceptedResponse(BaseModel):
    """Acknowledgement returned once a request passed the gate."""

    status: str = Field("accepted", description="Always 'accepted'.")
    received: int = Field(1, description="Number of items accepted.")
    remaining: int | None = Field(
        default=None, description="Attempts left in the current rate limit window."
    )


class ContentItem(BaseModel):
    slug: str
    title: str


class ContentListResponse(BaseModel):
    items: List[ContentItem] = Field(default_factory=list)
    total: int = 0
