"""Sync routes - Trigger runs, poll progress, replay failed batches."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ordersync.api.deps import get_sync_service
from ordersync.core.logging import get_logger
from ordersync.schemas.api import ReplayResponse, SyncRunOut, SyncStatusResponse, SyncTriggerResponse
from ordersync.schemas.sync import RecordCategory, SyncClass
from ordersync.services.sync_service import SyncService

router = APIRouter(prefix="/sync", tags=["sync"])
log = get_logger("sync_routes")


@router.get("/runs", response_model=list[SyncRunOut])
def list_sync_runs(
    tenant_id: Optional[str] = Query(None, description="Filter by tenant"),
    status: Optional[str] = Query(None, description="Filter by status (running, completed, aborted, cancelled, failed)"),
    limit: int = Query(20, ge=1, le=100, description="Number of runs to return"),
    service: SyncService = Depends(get_sync_service),
):
    """
    Recent sync runs, newest first.

    Shows items synced, pages processed, failed pages/batches and errors.
    """
    runs = service.list_runs(tenant_id=tenant_id, status=status, limit=limit)
    return [
        SyncRunOut(
            run_id=str(run.run_id),
            tenant_id=run.tenant_id,
            sync_class=run.sync_class,
            category=run.category,
            status=run.status,
            items_synced=run.items_synced,
            pages_processed=run.pages_processed,
            failed_pages=run.failed_pages,
            failed_batches=run.failed_batches,
            error_message=run.error_message,
            started_at=run.started_at,
            ended_at=run.ended_at,
        )
        for run in runs
    ]


@router.get("/status", response_model=list[SyncStatusResponse])
def list_sync_statuses(service: SyncService = Depends(get_sync_service)):
    """Latest in-process progress for every tenant, sorted by tenant."""
    return [
        SyncStatusResponse(
            **status.model_dump(),
            running=status.sync_class is not None and service.is_running(status.tenant_id, status.sync_class, status.category),
        )
        for status in service.list_statuses()
    ]


@router.get("/status/{tenant_id}", response_model=SyncStatusResponse)
def get_sync_status(tenant_id: str, service: SyncService = Depends(get_sync_service)):
    """
    Latest progress for a tenant.

    Falls back to the newest unexpired checkpoint when no run has reported
    progress in this process. 404 if neither exists.
    """
    status = service.get_status(tenant_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"No sync status for tenant {tenant_id}")

    running = status.sync_class is not None and service.is_running(tenant_id, status.sync_class, status.category)
    return SyncStatusResponse(**status.model_dump(), running=running)


@router.post("/{tenant_id}/cancel")
def cancel_sync(tenant_id: str, service: SyncService = Depends(get_sync_service)):
    """Ask every in-flight run of the tenant to checkpoint and stop."""
    cancelled = service.cancel(tenant_id)
    log.info(f"Cancellation requested for {tenant_id} ({cancelled} runs)")
    return {"tenant_id": tenant_id, "cancelled": cancelled}


@router.post("/{tenant_id}/{sync_class}", response_model=SyncTriggerResponse, status_code=202)
async def trigger_sync(
    tenant_id: str,
    sync_class: SyncClass,
    category: RecordCategory = Query(RecordCategory.ORDERS, description="Record category to sync"),
    service: SyncService = Depends(get_sync_service),
):
    """
    Start a sync in the background (non-blocking).

    Returns immediately; poll /sync/status/{tenant_id} for progress.
    A run already in flight for the same tenant, class and category is not restarted.
    """
    log.info(f"{sync_class.value} sync triggered for {tenant_id} ({category.value})")

    if not service.start(tenant_id, sync_class, category):
        return SyncTriggerResponse(
            tenant_id=tenant_id,
            sync_class=sync_class,
            category=category,
            status="already_running",
            message=f"{sync_class.value} sync for {tenant_id} is already in progress",
        )

    return SyncTriggerResponse(
        tenant_id=tenant_id,
        sync_class=sync_class,
        category=category,
        status="queued",
        message=f"{sync_class.value} sync for {tenant_id} started in background",
    )


@router.post("/{tenant_id}/{sync_class}/replay/{category}", response_model=ReplayResponse)
async def replay_failed_batches(
    tenant_id: str,
    sync_class: SyncClass,
    category: RecordCategory,
    service: SyncService = Depends(get_sync_service),
):
    """Re-attempt every recorded failed batch for the key; survivors stay in the ledger."""
    result = await service.replay_failed_batches(tenant_id, sync_class, category)
    return ReplayResponse(
        tenant_id=tenant_id,
        sync_class=sync_class,
        category=category,
        **result.model_dump(),
    )
