"""
StripScan Backend — Health Check Route
=========================================

What:  Reachability signal for the client and for load balancer probes.
Why:   The client polls this every 30 seconds (also while it believes the
       server is down) and only replays its offline queue after a successful
       answer.
How:   Runs SELECT 1 against the database. An upload cannot succeed without
       the database, so a database failure is reported as 503.

    Status levels:
    - ok:        Database reachable (HTTP 200)
    - unhealthy: Database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from stripscan import __version__, database
from stripscan.schemas.submission import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

# Initialized once when the module loads
_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "Database unreachable", "model": HealthResponse}},
    summary="Service health check",
)
async def health_check():
    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health check: database unreachable: %s", str(e))
        unhealthy = HealthResponse(
            status="unhealthy",
            version=__version__,
            database="disconnected",
            uptime_seconds=round(time.time() - _start_time, 2),
        )
        return JSONResponse(status_code=503, content=unhealthy.model_dump(by_alias=True))

    return HealthResponse(
        status="ok",
        version=__version__,
        database="connected",
        uptime_seconds=round(time.time() - _start_time, 2),
    )
