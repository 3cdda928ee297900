"""
Catalog Backend — Health Check Routes
=====================================

What:  Health endpoints for monitoring and orchestrator probes.
Why:   Load balancers and container orchestrators need to know whether the
       service can serve traffic, and operators want to see how the last
       reconciliation went without digging through logs.
How:   Probes the database with SELECT 1 and reads the sync scheduler status.

Endpoints:
    GET /health             aggregate status (database + sync scheduler)
    GET /health/liveness    process is up; never touches dependencies
    GET /health/readiness   503 when the database is unreachable

Status levels:
    healthy:    database reachable, last reconciliation (if any) completed
    degraded:   database reachable, last reconciliation ended in a failure outcome
    unhealthy:  database unreachable (HTTP 503)

A failed reconciliation only degrades the service: the read APIs keep serving
the last committed state.
"""

import logging
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_api import __version__
from catalog_api.database import get_db_session
from catalog_api.routes.regionais import get_sync_service
from catalog_api.schemas.regional import HealthResponse, SyncOutcome
from catalog_api.services.regional_sync import RegionalSyncService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


async def _database_reachable(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Health check: database unreachable: %s", str(e))
        return False


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "Database unreachable", "model": HealthResponse}},
    summary="Service health check",
    description=(
        "Returns the health status of the service, its database, and the "
        "regional synchronization scheduler."
    ),
)
async def health_check(
    db: AsyncSession = Depends(get_db_session),
    sync_service: RegionalSyncService = Depends(get_sync_service),
):
    """
    Check the database and report the reconciliation status.

    Returns:
        HealthResponse; HTTP 503 when the database cannot be reached.
    """
    db_ok = await _database_reachable(db)
    sync_status = sync_service.status()

    if not db_ok:
        overall = "unhealthy"
    elif sync_status.last_outcome not in (None, SyncOutcome.COMPLETED):
        overall = "degraded"
    else:
        overall = "healthy"

    body = HealthResponse(
        status=overall,
        version=__version__,
        database="connected" if db_ok else "disconnected",
        sync=sync_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
    if not db_ok:
        return JSONResponse(status_code=503, content=body.model_dump(mode="json"))
    return body


@router.get("/health/liveness", summary="Liveness probe")
async def liveness() -> dict:
    return {"status": "up"}


@router.get("/health/readiness", summary="Readiness probe")
async def readiness(db: AsyncSession = Depends(get_db_session)):
    if not await _database_reachable(db):
        return JSONResponse(status_code=503, content={"status": "down", "database": "disconnected"})
    return {"status": "up", "database": "connected"}
