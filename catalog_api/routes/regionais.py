"""
Catalog Backend — Regional Route Handlers
=========================================

What:  Read endpoints for the mirrored regional table and the on-demand sync trigger.
Why:   Frontends list the active regionais; operators force a reconciliation
       instead of waiting for the next periodic tick.
How:   Thin handlers: resolve the store / sync service through dependencies,
       delegate, and serialize.

Endpoints:
    GET  /api/v1/regionais        active rows, by external_id
    GET  /api/v1/regionais/all    every row including historical versions
    POST /api/v1/regionais/sync   run (or join) a reconciliation → SyncSummary

Status codes for /sync:
    200  for every tagged outcome, including busy, empty snapshot and failures
    500  only for configuration or programming errors
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Response

from catalog_api.schemas.regional import ErrorResponse, RegionalResponse, SyncSummary
from catalog_api.services.regional_store import RegionalStore, regional_store
from catalog_api.services.regional_sync import RegionalSyncService, regional_sync

logger = logging.getLogger(__name__)

# ── Router Configuration ──────────────────────────────────────────────────
router = APIRouter(prefix="/api/v1/regionais", tags=["Regionais"])


# ── Dependencies ──────────────────────────────────────────────────────────
# Tests swap these through app.dependency_overrides.
def get_regional_store() -> RegionalStore:
    return regional_store


def get_sync_service() -> RegionalSyncService:
    return regional_sync


@router.get(
    "",
    response_model=List[RegionalResponse],
    responses={500: {"description": "Database error", "model": ErrorResponse}},
    summary="List active regionais",
)
async def list_active_regionais(
    response: Response,
    store: RegionalStore = Depends(get_regional_store),
) -> List[RegionalResponse]:
    records = await store.list_all_active()
    response.headers["X-Total-Count"] = str(len(records))
    return [RegionalResponse.model_validate(record) for record in records]


@router.get(
    "/all",
    response_model=List[RegionalResponse],
    responses={500: {"description": "Database error", "model": ErrorResponse}},
    summary="List all regionais, historical versions included",
    description=(
        "Every row ever written by the reconciler. A renamed regional appears "
        "once per name, with only the latest version active."
    ),
)
async def list_all_regionais(
    response: Response,
    store: RegionalStore = Depends(get_regional_store),
) -> List[RegionalResponse]:
    records = await store.list_all()
    response.headers["X-Total-Count"] = str(len(records))
    return [RegionalResponse.model_validate(record) for record in records]


@router.post(
    "/sync",
    response_model=SyncSummary,
    responses={
        200: {"description": "Reconciliation summary (check `outcome`)", "model": SyncSummary},
        500: {"description": "Synchronization not configured", "model": ErrorResponse},
    },
    summary="Synchronize regionais with the upstream now",
    description=(
        "Fetches the upstream snapshot and applies inserts, inactivations and "
        "renames in one transaction. If a reconciliation is already running, the "
        "request joins it and returns its summary, or a busy summary after the "
        "configured wait."
    ),
)
async def sync_regionais(
    service: RegionalSyncService = Depends(get_sync_service),
) -> SyncSummary:
    """
    Trigger a reconciliation.

    A client that disconnects mid-request does not cancel the run: the
    reconciliation task is shielded and still commits or rolls back on its own.
    """
    summary = await service.trigger()
    if not summary.succeeded:
        logger.info("On-demand sync returned %s: %s", summary.outcome.value, summary.message)
    return summary
