"""Sync API endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from unleashed_sync.api.deps import get_credential_store, get_orchestrator
from unleashed_sync.schemas.sync import SyncQueuedResponse, SyncRequest
from unleashed_sync.services.credentials import CredentialStore
from unleashed_sync.services.sync.orchestrator import SyncOrchestrator
from unleashed_sync.services.sync.stats import (
    get_daily_stats,
    get_last_sync,
    get_sync_history,
    record_sync_report,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v2", tags=["sync"])


def _enqueue(request: SyncRequest, store: CredentialStore, entities: list[str] | None) -> SyncQueuedResponse:
    from unleashed_sync.tasks.sync import run_sync

    store.get(request.domain)
    task = run_sync.delay(request.domain, entities, request.strategy, request.dry_run)
    logger.info("SYNC_ENQUEUED domain=%s entities=%s task_id=%s", request.domain, entities, task.id)
    return SyncQueuedResponse(domain=request.domain, task_id=task.id)


async def _run(
    request: SyncRequest,
    orchestrator: SyncOrchestrator,
    entities: list[str] | None,
    dry_run: bool | None = None,
    include_details: bool = False,
) -> dict:
    dry = request.dry_run if dry_run is None else dry_run
    report = await orchestrator.run(
        request.domain,
        entities=entities,
        dry_run=dry,
        strategy=request.strategy,
    )
    if not dry:
        record_sync_report(report)
    return report.to_dict(include_details=include_details or dry)


@router.post("/data-fetch")
async def data_fetch(request: SyncRequest, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Fetch both sides and map them without writing anything."""
    return await _run(request, orchestrator, None, dry_run=True, include_details=True)


@router.post("/sync-locations")
async def sync_locations(
    request: SyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    store: CredentialStore = Depends(get_credential_store),
):
    if request.background:
        return _enqueue(request, store, ["locations"])
    return await _run(request, orchestrator, ["locations"])


@router.post("/sync-customers")
async def sync_customers(
    request: SyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    store: CredentialStore = Depends(get_credential_store),
):
    if request.background:
        return _enqueue(request, store, ["customers"])
    return await _run(request, orchestrator, ["customers"])


@router.post("/sync-products")
async def sync_products(
    request: SyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    store: CredentialStore = Depends(get_credential_store),
):
    if request.background:
        return _enqueue(request, store, ["products"])
    return await _run(request, orchestrator, ["products"])


@router.post("/comprehensive-sync")
async def comprehensive_sync(
    request: SyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    store: CredentialStore = Depends(get_credential_store),
):
    """Locations, then customers and products."""
    if request.background:
        return _enqueue(request, store, None)
    return await _run(request, orchestrator, None)


@router.get("/sync-history")
def sync_history(domain: str | None = None, limit: int = Query(10, ge=1, le=20)):
    return {
        "history": get_sync_history(limit=limit, domain=domain),
        "last_sync": get_last_sync(),
        "today": get_daily_stats(),
    }
