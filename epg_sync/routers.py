from typing import Annotated
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import APIRouter, Depends, HTTPException
import logging

from epg_sync import __version__
from epg_sync.config import settings
from epg_sync.database import get_db
from epg_sync.exceptions import UnknownInputError
from epg_sync.schemas import (
    ChannelResponse,
    EPGRequest,
    EPGResponse,
    SyncRequest,
    SyncRequestResponse,
    SyncStatusResponse,
)
from epg_sync.services.epg_query_service import get_channels_for_input, get_epg_data
from epg_sync.services.scheduler_service import SyncScheduler, sync_scheduler
from epg_sync.utils.timezone import HOUR_MS


logger = logging.getLogger(__name__)

main_router = APIRouter()


def get_scheduler() -> SyncScheduler:
    """Scheduler dependency; overridden in tests"""
    return sync_scheduler


SchedulerDep = Annotated[SyncScheduler, Depends(get_scheduler)]


def _hours_to_ms(hours: float | None, default_hours: int) -> int:
    return int((hours or default_hours) * HOUR_MS)


@main_router.get("/")
async def root(scheduler: SchedulerDep) -> dict:
    """Root endpoint with service information"""
    return {
        "service": "EPG Sync Service",
        "version": __version__,
        "inputs": scheduler.registered_inputs(),
        "endpoints": {
            "sync": "/inputs/{input_id}/sync - Trigger (POST) or cancel (DELETE) syncs",
            "periodic": "/inputs/{input_id}/sync/periodic - Register periodic sync (PUT)",
            "status": "/inputs/{input_id}/sync/status - Sync status",
            "channels": "/inputs/{input_id}/channels - Stored channels",
            "epg": "/epg - Get EPG for multiple channels (POST)",
            "health": "/health - Health check"
        }
    }


@main_router.get("/health")
async def health_check(scheduler: SchedulerDep) -> dict:
    """Health check endpoint"""
    return {
        "status": "ok",
        "scheduler_running": scheduler.running,
        "active_syncs": scheduler.coordinator.active_inputs(),
    }


@main_router.post("/inputs/{input_id}/sync")
async def trigger_sync(
    input_id: str,
    scheduler: SchedulerDep,
    request: SyncRequest | None = None,
) -> SyncRequestResponse:
    """Manually trigger an immediate sync for an input"""
    logger.info("Manual sync triggered via API for %s", input_id)
    period_ms = _hours_to_ms(
        request.period_hours if request else None,
        settings.epg_immediate_window_hours,
    )
    try:
        task = scheduler.request_immediate_sync(input_id, period_ms)
    except UnknownInputError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    if task is None:
        return SyncRequestResponse(
            input_id=input_id,
            status="skipped",
            message="Sync already in progress for this input",
        )
    return SyncRequestResponse(input_id=input_id, status="started")


@main_router.put("/inputs/{input_id}/sync/periodic")
async def register_periodic_sync(
    input_id: str,
    scheduler: SchedulerDep,
    request: SyncRequest | None = None,
) -> SyncRequestResponse:
    """Register (or replace) the periodic sync of an input"""
    period_ms = _hours_to_ms(
        request.period_hours if request else None,
        settings.epg_periodic_window_hours,
    )
    interval_ms = None
    if request and request.interval_hours:
        interval_ms = int(request.interval_hours * HOUR_MS)

    try:
        scheduler.request_periodic_sync(input_id, period_ms, interval_ms=interval_ms)
    except UnknownInputError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    next_run = scheduler.get_next_run_time(input_id)
    return SyncRequestResponse(
        input_id=input_id,
        status="scheduled",
        next_run_time=next_run.isoformat() if next_run else None,
    )


@main_router.delete("/inputs/{input_id}/sync")
async def cancel_sync(input_id: str, scheduler: SchedulerDep) -> SyncRequestResponse:
    """Cancel periodic and in-flight syncs of an input"""
    affected = scheduler.cancel_all_sync_requests(input_id)
    return SyncRequestResponse(
        input_id=input_id,
        status="cancelled",
        message=None if affected else "No sync requests were active",
    )


@main_router.get("/inputs/{input_id}/sync/status")
async def sync_status(input_id: str, scheduler: SchedulerDep) -> SyncStatusResponse:
    """Current sync state and the last status event of an input"""
    event = scheduler.notifier.last_event(input_id)
    next_run = scheduler.get_next_run_time(input_id)
    return SyncStatusResponse(
        input_id=input_id,
        syncing=scheduler.is_syncing(input_id),
        next_run_time=next_run.isoformat() if next_run else None,
        last_event=event.to_dict() if event else None,
    )


@main_router.get("/inputs/{input_id}/channels")
async def list_channels(
    input_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> list[ChannelResponse]:
    """Stored channels of an input"""
    return await get_channels_for_input(db, input_id)


@main_router.post("/epg", response_model=EPGResponse)
async def get_epg(
    request: EPGRequest,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> EPGResponse:
    """
    Get EPG data for multiple channels over a time range

    Args:
        request: EPG request with channel ids, timezone, and date range

    Returns:
        EPG data grouped by channel id with timestamps in requested timezone
    """
    return await get_epg_data(db, request)
