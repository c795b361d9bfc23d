"""
NoteKeeper Backend — Health Check Route
=========================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Checks the database and the blob storage root, and reports the archive
       queue depth as information.
Who:   Called by container health checks, load balancers and monitoring.

Status levels:
    - healthy:   database and storage reachable (HTTP 200)
    - unhealthy: either is down (HTTP 503, stop routing traffic)

    The queue depth never changes the status; a backlog means the worker is
    slow or stopped, not that the API is down.
"""

import logging
import time

import aiofiles.os
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import text

from notekeeper import __version__
from notekeeper.container import ServiceContainer, get_container
from notekeeper.schemas.note import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

# Initialized once when the module loads
_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "A critical dependency is down", "model": HealthResponse}},
    summary="Service health check",
)
async def health_check(
    response: Response,
    container: ServiceContainer = Depends(get_container),
) -> HealthResponse:
    """
    Probe each dependency with a lightweight call.

    Database: SELECT 1. Storage: the root directory exists.
    Queue: approximate message count on the archive queue.
    """
    db_status = "connected"
    storage_status = "available"
    queue_depth = None
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        async with container.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    # ── Check Storage ─────────────────────────────────────────────────────
    if not await aiofiles.os.path.isdir(container.object_store.storage_root):
        storage_status = "unavailable"
        overall = "unhealthy"
        logger.warning("Health check: storage root %s missing", container.object_store.storage_root)

    # ── Queue Depth (informational) ───────────────────────────────────────
    if db_status == "connected":
        try:
            queue_depth = await container.archive_queue.approximate_count()
        except Exception as e:
            logger.warning("Health check: archive queue depth unavailable: %s", str(e))

    if overall != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        storage=storage_status,
        archive_queue_depth=queue_depth,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
