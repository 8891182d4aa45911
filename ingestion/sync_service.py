"""
Sync service - the outbound surface used by the API, the scheduler and scripts.

Builds one client per source (shared rate limiter, separate token providers),
a fresh driver per run, and the orchestrator that drives it.
"""

import asyncio
import math
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union
import logging

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, settings
from core.database import async_session_maker
from core.exceptions import UnsupportedSyncError
from ingestion.base import SourceDriver
from ingestion.checkpoint_store import AttemptCounters, CheckpointStore
from ingestion.clients import SourceClient, build_source_clients
from ingestion.drivers.cheapshark_driver import CheapSharkDriver
from ingestion.drivers.igdb_driver import IgdbDriver
from ingestion.drivers.rawg_driver import RawgDriver
from ingestion.drivers.steam_driver import SteamDriver
from ingestion.drivers.twitch_driver import TwitchDriver
from ingestion.loaders.upsert_sink import UpsertSink
from ingestion.runner import SyncOrchestrator
from models.base import Source, SyncType
from models.rawg import RawgGame
from schemas.api import SyncAttemptInfo, SyncStats, SyncSummary

logger = logging.getLogger(__name__)

DRIVERS: Dict[Source, Type[SourceDriver]] = {
    Source.RAWG: RawgDriver,
    Source.IGDB: IgdbDriver,
    Source.CHEAPSHARK: CheapSharkDriver,
    Source.STEAM: SteamDriver,
    Source.TWITCH: TwitchDriver,
}

# Collections counted in per-source statistics
SOURCE_COLLECTIONS: Dict[Source, List[str]] = {
    Source.RAWG: ["rawg_games"],
    Source.IGDB: ["igdb_games"],
    Source.CHEAPSHARK: ["cheapshark_stores", "cheapshark_games", "cheapshark_deals"],
    Source.STEAM: ["steam_apps", "steam_player_history"],
    Source.TWITCH: ["twitch_games", "twitch_streams", "twitch_clips", "twitch_viewer_history"],
}

RAWG_REFRESH_BATCH = 40


class SyncService:
    """Entry points for every sync type plus per-source statistics."""

    def __init__(
        self,
        db_session: AsyncSession,
        http_client: httpx.AsyncClient,
        app_settings: Settings = settings,
        clients: Optional[Dict[Source, SourceClient]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.db = db_session
        self.settings = app_settings
        self.sink = UpsertSink(db_session)
        self.checkpoints = CheckpointStore(db_session)
        self.clients = clients or build_source_clients(app_settings, http_client, sleep=sleep)
        self.orchestrator = SyncOrchestrator(
            self.checkpoints,
            self.sink,
            stop_event=stop_event,
            sleep=sleep,
            error_backoff_seconds=app_settings.ERROR_BACKOFF_SECONDS,
            max_error_backoff_seconds=app_settings.MAX_ERROR_BACKOFF_SECONDS,
        )

    def driver(self, source: Union[Source, str]) -> SourceDriver:
        """A fresh driver; drivers keep per-run state."""
        source = Source(source)
        return DRIVERS[source](self.clients[source], self.sink)

    def request_stop(self):
        self.orchestrator.request_stop()

    # ------------------------------------------------------------------
    # Sync entry points
    # ------------------------------------------------------------------

    async def perform_full_sync(self, source: Union[Source, str]) -> SyncSummary:
        return await self.orchestrator.run_historical(self.driver(source))

    async def perform_incremental_sync(self, source: Union[Source, str]) -> SyncSummary:
        return await self.orchestrator.run_incremental(self.driver(source))

    async def perform_hot_update_sync(self, source: Union[Source, str]) -> SyncSummary:
        return await self.orchestrator.run_hot_update(self.driver(source))

    async def perform_sync(self, source: Union[Source, str], sync_type: Union[SyncType, str]) -> SyncSummary:
        sync_type = SyncType(sync_type)
        if sync_type == SyncType.HISTORICAL:
            return await self.perform_full_sync(source)
        if sync_type == SyncType.INCREMENTAL:
            return await self.perform_incremental_sync(source)
        return await self.perform_hot_update_sync(source)

    @staticmethod
    def check_supported(source: Union[Source, str], sync_type: Union[SyncType, str]):
        """Raise UnsupportedSyncError for pairs no driver implements."""
        source, sync_type = Source(source), SyncType(sync_type)
        if sync_type not in DRIVERS[source].supported_sync_types:
            raise UnsupportedSyncError(
                f"{source.value} does not support {sync_type.value} sync",
                context={"source": source.value, "sync_type": sync_type.value}
            )

    # ------------------------------------------------------------------
    # One-off operations
    # ------------------------------------------------------------------

    async def refresh_rawg_games(self, start_id: int, end_id: int) -> Dict[str, Any]:
        """Re-fetch RAWG detail payloads for stored games with ids in [start_id, end_id]."""
        driver: RawgDriver = self.driver(Source.RAWG)
        stored = await self.sink.query(
            "rawg_games",
            RawgGame.id >= start_id,
            RawgGame.id <= end_id,
            order_by=RawgGame.id,
        )
        game_ids = [game.id for game in stored]
        logger.info(f"Refreshing {len(game_ids)} RAWG games between {start_id} and {end_id}")

        counters = AttemptCounters()
        for i in range(0, len(game_ids), RAWG_REFRESH_BATCH):
            batch = game_ids[i:i + RAWG_REFRESH_BATCH]
            page = await driver.fetch_details(batch)
            await self.orchestrator.write_records(page.records, counters)
            counters.items_failed += page.failed_items

        return {"requested": len(game_ids), **counters.as_values()}

    async def search_and_sync_cheapshark(self, title: str, limit: int = 20) -> Dict[str, Any]:
        """Search CheapShark by title and store every match with its deals."""
        driver: CheapSharkDriver = self.driver(Source.CHEAPSHARK)
        page = await driver.search(title, limit=limit)

        counters = AttemptCounters()
        await self.orchestrator.write_records(page.records, counters)
        counters.items_failed += page.failed_items

        logger.info(f"CheapShark search '{title}': {counters.items_processed} records stored")
        return {"title": title, **counters.as_values()}

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_sync_stats(self, source: Union[Source, str]) -> SyncStats:
        source = Source(source)
        driver_cls = DRIVERS[source]
        limits = self.settings.limits_for(source.value)

        record_counts = {}
        for collection in SOURCE_COLLECTIONS[source]:
            record_counts[collection] = await self.sink.count(collection)
        total_records = record_counts[driver_cls.primary_collection]

        percent_complete = None
        calls_needed = None
        if limits.estimated_total:
            percent_complete = round(min(100.0, total_records / limits.estimated_total * 100), 2)
            remaining = max(limits.estimated_total - total_records, 0)
            calls_needed = math.ceil(remaining / limits.page_size)

        last_success_at = {}
        for sync_type in SyncType:
            if sync_type in driver_cls.supported_sync_types:
                last_success_at[sync_type.value] = await self.checkpoints.last_success_at(source, sync_type)

        recent = await self.checkpoints.recent_attempts(source)

        return SyncStats(
            source=source,
            cursor=await self.checkpoints.latest_cursor(source, SyncType.HISTORICAL),
            total_records=total_records,
            record_counts=record_counts,
            estimated_total=limits.estimated_total,
            percent_complete=percent_complete,
            calls_needed=calls_needed,
            last_success_at=last_success_at,
            recent_attempts=[SyncAttemptInfo.model_validate(attempt) for attempt in recent],
        )


@asynccontextmanager
async def open_sync_service(app_settings: Settings = settings, session_maker=None, **kwargs):
    """Session and HTTP client scoped to one unit of work."""
    maker = session_maker or async_session_maker
    async with maker() as session:
        async with httpx.AsyncClient(timeout=app_settings.HTTP_TIMEOUT) as http_client:
            yield SyncService(session, http_client, app_settings, **kwargs)
