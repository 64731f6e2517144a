from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Reports ``degraded`` when the cleanup sweeper is not running, since the
    in-memory record store then grows without bound.

    Returns:
        dict: ``status`` plus sweeper state and the number of tracked clients.
    """

    sweeper = request.app.state.sweeper
    return {
        "status": "ok" if sweeper.is_running else "degraded",
        "sweeper_running": sweeper.is_running,
        "tracked_clients": len(request.app.state.rate_limiter),
    }
