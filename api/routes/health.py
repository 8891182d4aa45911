"""
Health check endpoint with database and sync cursor status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from api.dependencies import get_db
from ingestion.checkpoint_store import CheckpointStore
from schemas.api import HealthCheckResponse, SourceCursorInfo
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


def is_failing(cursor) -> bool:
    """The pair's most recent terminal run failed."""
    if cursor.last_failure_at is None:
        return False
    return cursor.last_success_at is None or cursor.last_failure_at > cursor.last_success_at


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Cursor status for every (source, sync type) pair that has run
    """
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {str(e)}")

    cursors = []
    failing_pairs = 0

    if db_connected:
        try:
            for row in await CheckpointStore(db).cursor_rows():
                if is_failing(row):
                    failing_pairs += 1
                cursors.append(SourceCursorInfo.model_validate(row))
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch sync cursors: {str(e)}")

    # Status is derived by the validator in HealthCheckResponse
    return HealthCheckResponse(
        database_connected=db_connected,
        cursors=cursors,
        total_pairs=len(cursors),
        failing_pairs=failing_pairs
    )
