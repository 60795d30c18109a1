"""Debug-only reconciliation diagnostics."""

from fastapi import APIRouter, Request

router = APIRouter(prefix="/debug", tags=["debug"])


@router.get("/status-cache/stats")
async def status_cache_stats(request: Request) -> dict:
    """Status cache entry counts by source and average age."""
    session = request.app.state.session
    stats = session.statuses.get_stats()
    stats["in_flight_fetches"] = len(session.status_sync.in_flight())
    return stats


@router.get("/messages/stats")
async def message_stats(request: Request) -> dict:
    return request.app.state.session.messages.get_stats()


@router.get("/archive/stats")
async def archive_stats(request: Request) -> dict:
    return request.app.state.session.archive.get_stats()


@router.get("/jobs")
async def jobs_status(request: Request) -> dict:
    return request.app.state.session.scheduler.get_status()
