"""
Code Journal Backend — Health Check Route
==========================================

What:  Health endpoint for monitoring and load balancer probes.
How:   Runs `SELECT 1` against the database and writes a probe file under
       the storage root.

    Status levels:
    - healthy:   database and storage both usable (HTTP 200)
    - unhealthy: either one failed (HTTP 503)
"""

import logging
import os
import time

from fastapi import APIRouter, Response
from sqlalchemy import text

from codejournal import __version__, database
from codejournal.schemas.common import HealthResponse
from codejournal.services.filesystem import filesystem_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()

PROBE_NAME = ".health-probe"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(response: Response) -> HealthResponse:
    db_status = "connected"
    storage_status = "writable"
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    # ── Check Storage ─────────────────────────────────────────────────────
    probe = filesystem_store.storage_root / PROBE_NAME
    try:
        with open(probe, "w", encoding="utf-8") as f:
            f.write("ok")
        os.remove(probe)
    except OSError as e:
        storage_status = "unavailable"
        overall = "unhealthy"
        logger.warning("Health check: storage root not writable: %s", str(e))

    if overall != "healthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        storage=storage_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
