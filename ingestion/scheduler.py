import logging
from datetime import date
from typing import Callable, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from core.config import Settings, settings
from core.exceptions import SyncException
from ingestion.sync_service import open_sync_service
from models.base import Source, SyncType

logger = logging.getLogger(__name__)

HOT_UPDATE_SOURCES = (Source.CHEAPSHARK, Source.TWITCH)
SUNDAY = 6


class SyncScheduler:
    def __init__(
        self,
        app_settings: Settings = settings,
        service_factory=open_sync_service,
        today: Callable[[], date] = date.today,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.settings = app_settings
        self.service_factory = service_factory
        self.today = today
        self.scheduler = scheduler or AsyncIOScheduler()

    async def run_sync_job(self, source: Source, sync_type: SyncType):
        """Run one sync; failures are logged and the next trigger tries again"""
        logger.info(f"Scheduler: starting {source.value} {sync_type.value} sync")
        try:
            async with self.service_factory(self.settings) as service:
                summary = await service.perform_sync(source, sync_type)
            logger.info(
                f"Scheduler: {source.value} {sync_type.value} sync {summary.status} "
                f"({summary.items_processed} items, cursor {summary.last_cursor})"
            )
        except SyncException as e:
            logger.error(
                f"Scheduler: {source.value} {sync_type.value} sync failed - {e.message}",
                extra={"error_context": e.to_dict()}
            )
        except Exception as e:
            logger.error(f"Scheduler: {source.value} {sync_type.value} sync failed - {e}")

    async def run_daily_job(self):
        """RAWG historical sync, or RAWG new releases on Sundays"""
        if self.today().weekday() == SUNDAY:
            await self.run_sync_job(Source.RAWG, SyncType.INCREMENTAL)
        else:
            await self.run_sync_job(Source.RAWG, SyncType.HISTORICAL)

    async def run_hot_updates(self):
        for source in HOT_UPDATE_SOURCES:
            await self.run_sync_job(source, SyncType.HOT_UPDATE)

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_daily_job,
            trigger=CronTrigger(hour=self.settings.DAILY_SYNC_HOUR, minute=0),
            id="daily_sync",
            replace_existing=True,
            max_instances=1
        )
        self.scheduler.add_job(
            self.run_hot_updates,
            trigger=IntervalTrigger(minutes=self.settings.HOT_UPDATE_INTERVAL_MINUTES),
            id="hot_updates",
            replace_existing=True,
            max_instances=1
        )
        self.scheduler.start()
        logger.info("Sync Scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Sync Scheduler stopped")
