"""Public endpoints gated by the throttling engine.

Each route names the policy of its endpoint class; the handlers run only
when the gate allowed the request.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Request, UploadFile, status

from app.adapters.rate_limit.base import Decision
from app.core.rate_limit import rate_limit
from app.schemas.public import (
    AcceptedResponse,
    ContactSubmission,
    ContentListResponse,
    TelemetryBatch,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Public"])


def _remaining(request: Request) -> int | None:
    decision: Decision | None = getattr(request.state, "rate_limit", None)
    return decision.remaining if decision else None


@router.post(
    "/contact",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(rate_limit("contact"))],
)
async def submit_contact(payload: ContactSubmission, request: Request) -> AcceptedResponse:
    """Accept a contact form submission for delivery."""
    logger.info(
        "contact.accepted",
        extra={"message_chars": len(payload.message), "has_subject": bool(payload.subject)},
    )
    return AcceptedResponse(remaining=_remaining(request))


@router.get(
    "/content",
    response_model=ContentListResponse,
    dependencies=[Depends(rate_limit("read_api"))],
)
async def list_content() -> ContentListResponse:
    """List published content.

    The content repository is a separate service; this endpoint exposes the
    throttled read surface only.
    """
    return ContentListResponse()


@router.post(
    "/telemetry",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(rate_limit("telemetry"))],
)
async def ingest_telemetry(batch: TelemetryBatch, request: Request) -> AcceptedResponse:
    """Accept a batch of telemetry events."""
    logger.info("telemetry.accepted", extra={"events": len(batch.events)})
    return AcceptedResponse(received=len(batch.events), remaining=_remaining(request))


@router.post(
    "/uploads",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(rate_limit("upload"))],
)
async def upload_file(request: Request, file: UploadFile = File(...)) -> AcceptedResponse:
    """Accept an uploaded file."""
    size = len(await file.read())
    logger.info("upload.accepted", extra={"upload_bytes": size, "content_type": file.content_type})
    return AcceptedResponse(remaining=_remaining(request))
