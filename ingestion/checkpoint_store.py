"""
Durable resume cursors and sync attempt bookkeeping.

Cursor invariants:
- ``latest_cursor`` is the maximum over every attempt's last_cursor and the
  pair's SyncCursor row, so progress survives crashes and stopped runs
- cursors are only ever raised; ``advance`` with a smaller value is a no-op
  for the cursor but still records the counters

Attempt lifecycle: running -> completed | failed, exactly once.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.exceptions import CheckpointError
from models.base import Source, SyncStatus, SyncType, utc_now
from models.checkpoint import SyncCursor
from models.sync_attempt import SyncAttempt

logger = logging.getLogger(__name__)

ABANDONED_MESSAGE = "Abandoned: a newer attempt started while this one was still marked running"


@dataclass
class AttemptCounters:
    items_processed: int = 0
    items_added: int = 0
    items_failed: int = 0

    def as_values(self) -> Dict[str, int]:
        return asdict(self)


class CheckpointStore:
    """Owns sync_cursors and sync_attempts."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def latest_cursor(self, source: Source, sync_type: SyncType) -> int:
        attempt_max = await self.db.execute(
            select(func.max(SyncAttempt.last_cursor)).where(
                and_(SyncAttempt.source == source, SyncAttempt.sync_type == sync_type)
            )
        )
        cursor_row = await self._get_cursor_row(source, sync_type)

        candidates = [attempt_max.scalar_one_or_none() or 0]
        if cursor_row is not None:
            candidates.append(cursor_row.last_cursor or 0)
        return int(max(candidates))

    async def get_attempt(self, attempt_id: int) -> Optional[SyncAttempt]:
        result = await self.db.execute(
            select(SyncAttempt)
            .where(SyncAttempt.id == attempt_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def last_successful_attempt(self, source: Source, sync_type: SyncType) -> Optional[SyncAttempt]:
        result = await self.db.execute(
            select(SyncAttempt)
            .where(
                and_(
                    SyncAttempt.source == source,
                    SyncAttempt.sync_type == sync_type,
                    SyncAttempt.status == SyncStatus.COMPLETED,
                )
            )
            .order_by(SyncAttempt.started_at.desc(), SyncAttempt.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def last_attempt(self, source: Source, sync_type: SyncType) -> Optional[SyncAttempt]:
        """Most recent attempt for the pair, whatever its status."""
        result = await self.db.execute(
            select(SyncAttempt)
            .where(and_(SyncAttempt.source == source, SyncAttempt.sync_type == sync_type))
            .order_by(SyncAttempt.started_at.desc(), SyncAttempt.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def last_success_at(self, source: Source, sync_type: SyncType) -> Optional[datetime]:
        attempt = await self.last_successful_attempt(source, sync_type)
        return attempt.ended_at if attempt else None

    async def recent_attempts(self, source: Source, limit: int = 10) -> List[SyncAttempt]:
        result = await self.db.execute(
            select(SyncAttempt)
            .where(SyncAttempt.source == source)
            .order_by(SyncAttempt.started_at.desc(), SyncAttempt.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def cursor_rows(self) -> List[SyncCursor]:
        result = await self.db.execute(select(SyncCursor).order_by(SyncCursor.source, SyncCursor.sync_type))
        return list(result.scalars().all())

    async def _get_cursor_row(self, source: Source, sync_type: SyncType) -> Optional[SyncCursor]:
        result = await self.db.execute(
            select(SyncCursor).where(
                and_(SyncCursor.source == source, SyncCursor.sync_type == sync_type)
            )
        )
        return result.scalar_one_or_none()

    async def _ensure_cursor_row(self, source: Source, sync_type: SyncType) -> SyncCursor:
        row = await self._get_cursor_row(source, sync_type)
        if row is None:
            row = SyncCursor(source=source, sync_type=sync_type, last_cursor=0, total_runs=0)
            self.db.add(row)
            await self.db.flush()
        return row

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def begin_attempt(
        self,
        source: Source,
        sync_type: SyncType,
        start_cursor: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Create a running attempt; stale running attempts for the pair are closed as failed."""
        source, sync_type = Source(source), SyncType(sync_type)
        now = utc_now()
        try:
            abandoned = await self.db.execute(
                update(SyncAttempt)
                .where(
                    and_(
                        SyncAttempt.source == source,
                        SyncAttempt.sync_type == sync_type,
                        SyncAttempt.status == SyncStatus.RUNNING,
                    )
                )
                .values(status=SyncStatus.FAILED, ended_at=now, error_message=ABANDONED_MESSAGE)
                .execution_options(synchronize_session=False)
            )
            if abandoned.rowcount:
                logger.warning(
                    f"Marked {abandoned.rowcount} stale running attempt(s) for "
                    f"{source.value}/{sync_type.value} as failed"
                )

            cursor_row = await self._ensure_cursor_row(source, sync_type)
            cursor_row.total_runs = (cursor_row.total_runs or 0) + 1

            attempt = SyncAttempt(
                source=source,
                sync_type=sync_type,
                status=SyncStatus.RUNNING,
                started_at=now,
                start_cursor=start_cursor,
                last_cursor=start_cursor,
                items_processed=0,
                items_added=0,
                items_failed=0,
                run_metadata=metadata or {},
            )
            self.db.add(attempt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise CheckpointError(
                "Failed to begin sync attempt",
                context={"source": source.value, "sync_type": sync_type.value, "operation": "begin"},
                original_exception=e
            )

        logger.info(
            f"Started attempt {attempt.id} for {source.value}/{sync_type.value} at cursor {start_cursor}"
        )
        return attempt.id

    async def _running_attempt(self, attempt_id: int, operation: str) -> SyncAttempt:
        attempt = await self.get_attempt(attempt_id)
        if attempt is None:
            raise CheckpointError(
                f"Unknown sync attempt {attempt_id}",
                context={"attempt_id": attempt_id, "operation": operation}
            )
        if attempt.status != SyncStatus.RUNNING:
            raise CheckpointError(
                f"Sync attempt {attempt_id} is already {attempt.status.value}",
                context={"attempt_id": attempt_id, "operation": operation}
            )
        return attempt

    async def advance(self, attempt_id: int, new_cursor: int, counters: AttemptCounters):
        """Record progress: raise the attempt and pair cursors to ``new_cursor`` and store counters."""
        attempt = await self._running_attempt(attempt_id, "advance")
        try:
            attempt.last_cursor = max(attempt.last_cursor or 0, new_cursor)
            for field, value in counters.as_values().items():
                setattr(attempt, field, value)

            cursor_row = await self._ensure_cursor_row(attempt.source, attempt.sync_type)
            cursor_row.last_cursor = max(cursor_row.last_cursor or 0, new_cursor)
            cursor_row.updated_at = utc_now()

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise CheckpointError(
                "Failed to advance cursor",
                context={"attempt_id": attempt_id, "operation": "advance", "cursor": new_cursor},
                original_exception=e
            )

    async def _finish(
        self,
        attempt_id: int,
        status: SyncStatus,
        counters: AttemptCounters,
        metadata: Optional[Dict[str, Any]],
        error_message: Optional[str],
    ) -> SyncAttempt:
        operation = "complete" if status == SyncStatus.COMPLETED else "fail"
        attempt = await self._running_attempt(attempt_id, operation)
        try:
            now = utc_now()
            attempt.status = status
            attempt.ended_at = now
            attempt.duration_seconds = (now - attempt.started_at).total_seconds()
            attempt.error_message = error_message
            for field, value in counters.as_values().items():
                setattr(attempt, field, value)
            if metadata:
                attempt.run_metadata = {**(attempt.run_metadata or {}), **metadata}

            cursor_row = await self._ensure_cursor_row(attempt.source, attempt.sync_type)
            if status == SyncStatus.COMPLETED:
                cursor_row.last_success_at = now
            else:
                cursor_row.last_failure_at = now

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise CheckpointError(
                f"Failed to {operation} sync attempt",
                context={"attempt_id": attempt_id, "operation": operation},
                original_exception=e
            )
        return attempt

    async def complete(
        self,
        attempt_id: int,
        counters: AttemptCounters,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SyncAttempt:
        return await self._finish(attempt_id, SyncStatus.COMPLETED, counters, metadata, None)

    async def fail(
        self,
        attempt_id: int,
        error_message: str,
        counters: AttemptCounters,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SyncAttempt:
        return await self._finish(attempt_id, SyncStatus.FAILED, counters, metadata, error_message[:2000])
