# ============================================================================
# File: ingestion/runner.py
# Description: Sync orchestrator driving a source driver page by page
# ============================================================================
"""
Sync Orchestrator - runs one sync attempt for one source.

Each run:
- Opens a sync attempt at the durable cursor
- Fetches pages sequentially through the driver
- Writes every record through the upsert sink (record failures are counted, not fatal)
- Advances the cursor after each written page
- Ends on exhaustion, call budget, page cap, a run of skipped pages,
  the consecutive-error threshold or an external stop request
"""

import asyncio
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional
import logging

from core.exceptions import (
    CheckpointError,
    ErrorBudgetExceeded,
    NonRetryableError,
    RateLimitError,
    RetryableError,
    SyncException,
    SyncInterrupted,
    UnsupportedSyncError,
    UpsertError,
)
from ingestion.base import HotProfile, IncrementalWindow, PageRecord, PageResult, SourceDriver
from ingestion.checkpoint_store import AttemptCounters, CheckpointStore
from ingestion.loaders.upsert_sink import UpsertSink
from models.base import SyncType, utc_now
from models.sync_attempt import SyncAttempt
from schemas.api import SyncSummary

logger = logging.getLogger(__name__)

STOPPED_MESSAGE = "Stopped by request"

PageFetcher = Callable[[int], Awaitable[PageResult]]


class SyncOrchestrator:
    """
    Sync orchestrator

    Responsibilities:
    - Drive the page loop for historical, incremental and hot-update runs
    - Enforce call budgets, page caps and the consecutive-error threshold
    - Keep attempt counters and the durable cursor in step with written pages
    """

    def __init__(
        self,
        checkpoints: CheckpointStore,
        sink: UpsertSink,
        stop_event: Optional[asyncio.Event] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        error_backoff_seconds: float = 1.0,
        max_error_backoff_seconds: float = 5.0,
    ):
        self.checkpoints = checkpoints
        self.sink = sink
        self.stop_event = stop_event or asyncio.Event()
        self._sleep = sleep
        self.error_backoff_seconds = error_backoff_seconds
        self.max_error_backoff_seconds = max_error_backoff_seconds

    def request_stop(self):
        """Ask the running loop to stop before its next page."""
        self.stop_event.set()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run_historical(self, driver: SourceDriver) -> SyncSummary:
        self._require(driver, SyncType.HISTORICAL)
        latest = await self.checkpoints.latest_cursor(driver.source, SyncType.HISTORICAL)
        previous = await self.checkpoints.last_attempt(driver.source, SyncType.HISTORICAL)
        start_cursor = driver.start_cursor(latest, previous)

        return await self._run(
            driver,
            SyncType.HISTORICAL,
            start_cursor,
            driver.fetch_page,
            max_pages=None,
        )

    async def run_incremental(self, driver: SourceDriver, lookback: Optional[timedelta] = None) -> SyncSummary:
        self._require(driver, SyncType.INCREMENTAL)
        window = await self.incremental_window(driver, lookback)
        logger.info(f"{driver.name} incremental window {window.start:%Y-%m-%d} .. {window.end:%Y-%m-%d}")

        async def fetch(cursor: int) -> PageResult:
            return await driver.fetch_incremental_page(cursor, window)

        return await self._run(
            driver,
            SyncType.INCREMENTAL,
            0,
            fetch,
            max_pages=driver.limits.max_pages_incremental,
            metadata={"window_start": window.start.isoformat(), "window_end": window.end.isoformat()},
        )

    async def run_hot_update(self, driver: SourceDriver, profiles: Optional[List[HotProfile]] = None) -> SyncSummary:
        self._require(driver, SyncType.HOT_UPDATE)
        profiles = list(profiles if profiles is not None else driver.hot_update_profiles())

        async def fetch(cursor: int) -> PageResult:
            if not profiles:
                return PageResult(next_cursor=cursor, exhausted=True)
            page = await driver.fetch_profile(profiles[cursor])
            page.next_cursor = cursor + 1
            page.exhausted = cursor + 1 >= len(profiles)
            return page

        return await self._run(
            driver,
            SyncType.HOT_UPDATE,
            0,
            fetch,
            max_pages=None,
            metadata={"profiles": [p.name for p in profiles]},
        )

    async def incremental_window(self, driver: SourceDriver, lookback: Optional[timedelta] = None) -> IncrementalWindow:
        """From the start of the last completed incremental run, else ``lookback`` ago, up to now."""
        now = utc_now()
        last = await self.checkpoints.last_successful_attempt(driver.source, SyncType.INCREMENTAL)
        if last is not None:
            start = last.started_at
        else:
            start = now - (lookback or timedelta(days=driver.limits.incremental_lookback_days))
        return IncrementalWindow(start=start, end=now)

    @staticmethod
    def _require(driver: SourceDriver, sync_type: SyncType):
        if not driver.supports(sync_type):
            raise UnsupportedSyncError(
                f"{driver.name} does not support {sync_type.value} sync",
                context={"source": driver.name, "sync_type": sync_type.value}
            )

    # ------------------------------------------------------------------
    # Page loop
    # ------------------------------------------------------------------

    async def _run(
        self,
        driver: SourceDriver,
        sync_type: SyncType,
        start_cursor: int,
        fetch: PageFetcher,
        max_pages: Optional[int],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SyncSummary:
        limits = driver.limits
        counters = AttemptCounters()
        run_metadata: Dict[str, Any] = dict(metadata or {})

        attempt_id = await self.checkpoints.begin_attempt(
            driver.source, sync_type, start_cursor, metadata=run_metadata
        )
        logger.info(f"Starting {driver.name} {sync_type.value} sync (attempt {attempt_id}, cursor {start_cursor})")

        cursor = start_cursor
        durable_cursor = start_cursor
        pages = 0
        consecutive_errors = 0
        calls_at_start = driver.client.calls_made
        stop_reason = None

        def snapshot() -> Dict[str, Any]:
            return {
                **run_metadata,
                **driver.run_metadata(),
                "calls": driver.client.calls_made - calls_at_start,
                "pages": pages,
                "stop_reason": stop_reason,
            }

        try:
            # --------------------------------------------------
            # PAGE LOOP
            # --------------------------------------------------
            while True:
                if self.stop_event.is_set():
                    raise SyncInterrupted(STOPPED_MESSAGE, context={"source": driver.name, "cursor": cursor})

                calls_used = driver.client.calls_made - calls_at_start
                if limits.max_calls is not None and calls_used >= limits.max_calls:
                    stop_reason = "call_budget"
                    logger.info(f"{driver.name}: call budget of {limits.max_calls} used")
                    break
                if max_pages is not None and pages >= max_pages:
                    stop_reason = "page_cap"
                    logger.info(f"{driver.name}: page cap of {max_pages} reached")
                    break

                try:
                    page = await fetch(cursor)
                except RateLimitError as e:
                    # Never counted toward the consecutive-error threshold
                    wait = e.retry_after or driver.limits.rate_limit_default_wait
                    logger.warning(
                        f"{driver.name}: still rate limited at cursor {cursor}, waiting {wait:.0f}s",
                        extra={"error_context": e.to_dict()}
                    )
                    await self._sleep(wait)
                    continue
                except RetryableError as e:
                    consecutive_errors += 1
                    logger.warning(
                        f"{driver.name}: page at cursor {cursor} failed "
                        f"({consecutive_errors}/{limits.max_consecutive_errors}): {e.message}",
                        extra={"error_context": e.to_dict()}
                    )
                    if consecutive_errors >= limits.max_consecutive_errors:
                        raise ErrorBudgetExceeded(
                            f"{consecutive_errors} consecutive errors",
                            context={"source": driver.name, "cursor": cursor},
                            original_exception=e
                        )
                    delay = min(self.error_backoff_seconds * consecutive_errors, self.max_error_backoff_seconds)
                    await self._sleep(delay)
                    continue

                pages += 1
                await self.write_records(page.records, counters)
                counters.items_failed += page.failed_items

                if page.skipped:
                    # In-run index moves on; the durable cursor stays at the last page with data
                    consecutive_errors += 1
                    await self.checkpoints.advance(attempt_id, durable_cursor, counters)
                    cursor = max(cursor, page.next_cursor)
                    if consecutive_errors >= limits.max_consecutive_errors:
                        stop_reason = "not_found"
                        logger.info(
                            f"{driver.name}: {consecutive_errors} consecutive pages skipped after "
                            f"cursor {durable_cursor}, treating as end of data"
                        )
                        break
                    continue

                consecutive_errors = 0
                durable_cursor = max(durable_cursor, page.next_cursor)
                await self.checkpoints.advance(attempt_id, durable_cursor, counters)
                cursor = max(cursor, page.next_cursor)

                if pages % 10 == 0:
                    logger.info(
                        f"{driver.name}: {pages} pages, cursor {cursor}, "
                        f"{counters.items_processed} items ({counters.items_added} new)"
                    )

                if page.exhausted:
                    stop_reason = "exhausted"
                    break

            # --------------------------------------------------
            # FINALIZE
            # --------------------------------------------------
            await self.write_records(await driver.finalize(sync_type), counters)

            attempt = await self.checkpoints.complete(attempt_id, counters, metadata=snapshot())
            logger.info(
                f"Completed {driver.name} {sync_type.value} sync: {counters.items_processed} processed, "
                f"{counters.items_added} added, {counters.items_failed} failed ({stop_reason})"
            )
            return self._summary(attempt)

        except CheckpointError:
            raise

        except (SyncInterrupted, ErrorBudgetExceeded) as e:
            stop_reason = "stopped" if isinstance(e, SyncInterrupted) else "error_budget"
            message = STOPPED_MESSAGE if isinstance(e, SyncInterrupted) else e.message
            attempt = await self.checkpoints.fail(attempt_id, message, counters, metadata=snapshot())
            logger.error(f"{driver.name} {sync_type.value} sync failed: {message}", extra={"error_context": e.to_dict()})
            return self._summary(attempt)

        except SyncException as e:
            stop_reason = "fatal" if isinstance(e, NonRetryableError) else "error"
            await self.checkpoints.fail(attempt_id, str(e), counters, metadata=snapshot())
            logger.error(f"{driver.name} {sync_type.value} sync failed: {e}", extra={"error_context": e.to_dict()})
            raise

        except Exception as e:
            stop_reason = "error"
            await self.checkpoints.fail(attempt_id, f"{type(e).__name__}: {e}", counters, metadata=snapshot())
            raise SyncException(
                f"Unexpected error during {driver.name} {sync_type.value} sync",
                context={"source": driver.name, "attempt_id": attempt_id, "cursor": cursor},
                original_exception=e
            )

    async def write_records(self, records: List[PageRecord], counters: AttemptCounters):
        """Upsert each record; write failures are counted and logged, never raised."""
        for item in records:
            try:
                result = await self.sink.upsert(item.collection, item.key, item.record)
            except UpsertError as e:
                counters.items_failed += 1
                logger.error(
                    f"Upsert failed for {item.collection} {item.key}: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
                continue
            counters.items_processed += 1
            if result.created:
                counters.items_added += 1

    @staticmethod
    def _summary(attempt: SyncAttempt) -> SyncSummary:
        return SyncSummary(
            attempt_id=attempt.id,
            source=attempt.source,
            sync_type=attempt.sync_type,
            status=attempt.status,
            items_processed=attempt.items_processed or 0,
            items_added=attempt.items_added or 0,
            items_failed=attempt.items_failed or 0,
            start_cursor=attempt.start_cursor or 0,
            last_cursor=attempt.last_cursor or 0,
            duration_seconds=attempt.duration_seconds or 0.0,
            error_message=attempt.error_message,
            metadata=attempt.run_metadata or {},
        )
