"""
Per-source sync statistics endpoint
"""

import time
import uuid
import logging
from fastapi import APIRouter, Depends, Request
from api.dependencies import get_sync_service
from ingestion.sync_service import SyncService
from models.base import Source
from schemas.api import APIResponse, SyncStats

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Statistics"])


@router.get("/stats/{source}", response_model=APIResponse[SyncStats])
async def get_stats(
    source: Source,
    request: Request,
    service: SyncService = Depends(get_sync_service)
):
    """
    Get sync progress for one source.

    Returns:
    - Historical cursor and record counts per collection
    - Percent complete and calls needed against the estimated total
    - Last success per sync type and recent attempts
    """
    start_time = time.time()
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")

    logger.info(f"[{request_id}] GET /stats/{source.value}")

    stats = await service.get_sync_stats(source)

    logger.info(
        f"[{request_id}] Stats: {stats.total_records} {source.value} records, cursor {stats.cursor}"
    )

    return APIResponse[SyncStats](
        request_id=request_id,
        api_latency_ms=int((time.time() - start_time) * 1000),
        data=stats
    )
