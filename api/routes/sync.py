"""
Sync trigger endpoint
"""

import logging
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from api.dependencies import get_background_sync
from core.exceptions import UnsupportedSyncError
from ingestion.sync_service import SyncService
from models.base import Source, SyncType
from schemas.api import SyncTriggerResponse

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Sync"])


@router.post(
    "/sync/{source}/{sync_type}",
    response_model=SyncTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED
)
async def trigger_sync(
    source: Source,
    sync_type: SyncType,
    request: Request,
    background_tasks: BackgroundTasks,
    run_sync=Depends(get_background_sync)
):
    """Start a sync in the background; unsupported pairs are rejected with 400."""
    request_id = getattr(request.state, "request_id", None)

    try:
        SyncService.check_supported(source, sync_type)
    except UnsupportedSyncError as e:
        logger.warning(f"[{request_id}] Rejected sync request: {e.message}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    background_tasks.add_task(run_sync, source, sync_type)
    logger.info(f"[{request_id}] Queued {source.value} {sync_type.value} sync")

    return SyncTriggerResponse(
        source=source,
        sync_type=sync_type,
        message=f"{source.value} {sync_type.value} sync started"
    )
