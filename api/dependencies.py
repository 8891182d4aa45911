"""
FastAPI dependencies
"""

from typing import AsyncGenerator
import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from core.config import settings
from core.database import async_session_maker
from ingestion.sync_service import SyncService, open_sync_service
from models.base import Source, SyncType
import logging

logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session


async def get_http_client(request: Request) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Reuse the application's client when startup created one."""
    client = getattr(request.app.state, "http_client", None)
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT) as client:
        yield client


async def get_sync_service(
    db: AsyncSession = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> SyncService:
    return SyncService(db, http_client, settings)


async def run_background_sync(source: Source, sync_type: SyncType):
    """Background task: the request session is closed by now, so open a new one."""
    try:
        async with open_sync_service(settings) as service:
            summary = await service.perform_sync(source, sync_type)
        logger.info(f"Background {source.value} {sync_type.value} sync finished: {summary.status}")
    except Exception as e:
        logger.error(f"Background {source.value} {sync_type.value} sync failed: {e}")


def get_background_sync():
    return run_background_sync
