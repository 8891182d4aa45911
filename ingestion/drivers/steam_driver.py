"""
Steam driver.

The full app list is fetched once per run and walked in ascending appid
order; the cursor is the highest appid handled so far. Apps already stored
are skipped. Only apps of type ``game`` get the player-count and review
lookups, which run concurrently and fail independently.
"""

import asyncio
import bisect
from typing import Any, Dict, List, Optional, Tuple
import logging

from ingestion.base import HotProfile, PageRecord, PageResult, SourceDriver
from ingestion.transformers.normalizer import FieldNormalizer
from models.base import Source, SyncType, utc_now
from models.steam import SteamApp
from schemas.normalized import SteamAppRecord, SteamPlayerCount, SteamPlayerSnapshot
from schemas.raw import SteamAppDetails, SteamAppListEntry, SteamReviewSummary

logger = logging.getLogger(__name__)

STEAM_API_BASE = "https://api.steampowered.com"
STEAM_STORE_BASE = "https://store.steampowered.com"

APP_LIST_URL = f"{STEAM_API_BASE}/ISteamApps/GetAppList/v2/"
APP_DETAILS_URL = f"{STEAM_STORE_BASE}/api/appdetails"
PLAYER_COUNT_URL = f"{STEAM_API_BASE}/ISteamUserStats/GetNumberOfCurrentPlayers/v1/"

SUPPLEMENTARY_TIMEOUT = 5.0
PLAYER_REFRESH_BATCH = 500


class SteamDriver(SourceDriver):
    source = Source.STEAM
    supported_sync_types = frozenset({SyncType.HISTORICAL, SyncType.HOT_UPDATE})
    primary_collection = "steam_apps"

    def __init__(self, client, sink):
        super().__init__(client, sink)
        self._apps: Optional[List[SteamAppListEntry]] = None
        self._app_ids: List[int] = []
        self._skipped_existing = 0

    def run_metadata(self) -> Dict[str, Any]:
        return {
            "app_list_size": len(self._app_ids),
            "skipped_existing": self._skipped_existing,
        }

    async def _load_app_list(self):
        params = {"key": self.client.api_key} if self.client.api_key else None
        outcome = await self.client.get(APP_LIST_URL, params=params)
        payload = self.expect_ok(outcome, APP_LIST_URL)
        raw_apps = (payload or {}).get("applist", {}).get("apps", [])

        by_id: Dict[int, SteamAppListEntry] = {}
        for raw in raw_apps:
            app = SteamAppListEntry.model_validate(raw)
            by_id.setdefault(app.appid, app)

        self._apps = [by_id[app_id] for app_id in sorted(by_id)]
        self._app_ids = [app.appid for app in self._apps]
        logger.info(f"Steam app list loaded: {len(self._apps)} apps")

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    async def fetch_page(self, cursor: int) -> PageResult:
        if self._apps is None:
            await self._load_app_list()

        start = bisect.bisect_right(self._app_ids, cursor)
        batch = self._apps[start:start + self.limits.page_size]
        if not batch:
            return PageResult(next_cursor=cursor, exhausted=True)

        existing = await self.sink.existing_keys("steam_apps", [app.appid for app in batch])
        self._skipped_existing += len(existing)

        result = PageResult(next_cursor=batch[-1].appid)
        for app in batch:
            if app.appid in existing:
                continue
            records, failed = await self._fetch_app(app)
            result.records.extend(records)
            result.failed_items += int(failed)

        result.exhausted = start + len(batch) >= len(self._apps)
        return result

    async def _fetch_app(self, app: SteamAppListEntry) -> Tuple[List[PageRecord], bool]:
        """Records for one app and whether the app counts as failed."""
        outcome = await self.client.get(APP_DETAILS_URL, params={"appids": app.appid}, timeout=10.0)
        if not outcome.is_ok:
            logger.warning(f"Steam details for app {app.appid} failed: {outcome.message or outcome.kind.value}")
            return [], True

        entry = (outcome.payload or {}).get(str(app.appid)) if isinstance(outcome.payload, dict) else None
        if not entry or not entry.get("success"):
            logger.debug(f"Steam app {app.appid} has no store page")
            return [], False

        details = entry.get("data") or {}
        player_count = None
        reviews = None
        if details.get("type") == "game":
            player_count, reviews = await asyncio.gather(
                self.player_count(app.appid),
                self.review_summary(app.appid),
            )

        mapped = self.map_items(
            [details],
            lambda raw: self.map_app(app, raw, player_count, reviews),
        )
        return mapped.records, mapped.failed_items > 0

    async def player_count(self, app_id: int) -> Optional[int]:
        outcome = await self.client.get(
            PLAYER_COUNT_URL, params={"appid": app_id}, timeout=SUPPLEMENTARY_TIMEOUT
        )
        if not outcome.is_ok or not isinstance(outcome.payload, dict):
            return None
        return FieldNormalizer.parse_int((outcome.payload.get("response") or {}).get("player_count")) or 0

    async def review_summary(self, app_id: int) -> Optional[SteamReviewSummary]:
        outcome = await self.client.get(
            f"{STEAM_STORE_BASE}/appreviews/{app_id}",
            params={"json": 1, "language": "all", "purchase_type": "all", "num_per_page": 0},
            timeout=SUPPLEMENTARY_TIMEOUT,
        )
        if not outcome.is_ok or not isinstance(outcome.payload, dict):
            return None
        summary = outcome.payload.get("query_summary")
        if not isinstance(summary, dict):
            return None
        return SteamReviewSummary.model_validate(summary)

    # ------------------------------------------------------------------
    # Hot update: player counts for the least recently refreshed games
    # ------------------------------------------------------------------

    def hot_update_profiles(self) -> List[HotProfile]:
        return [HotProfile("player_counts", {"limit": PLAYER_REFRESH_BATCH})]

    async def fetch_profile(self, profile: HotProfile) -> PageResult:
        games = await self.sink.query(
            "steam_apps",
            SteamApp.type == "game",
            order_by=[SteamApp.last_quick_update.asc().nulls_first(), SteamApp.app_id],
            limit=profile.params.get("limit", PLAYER_REFRESH_BATCH),
        )
        app_ids = [game.app_id for game in games]

        result = PageResult(exhausted=True)
        captured_at = utc_now()
        for app_id in app_ids:
            count = await self.player_count(app_id)
            if count is None:
                result.failed_items += 1
                continue
            result.records.append(
                PageRecord("steam_app_players", app_id, SteamPlayerCount(app_id=app_id, current_players=count))
            )
            if count > 0:
                result.records.append(self._snapshot(app_id, count, captured_at))
        return result

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _snapshot(app_id: int, count: int, captured_at) -> PageRecord:
        return PageRecord(
            "steam_player_history",
            (app_id, captured_at),
            SteamPlayerSnapshot(app_id=app_id, player_count=count, captured_at=captured_at),
        )

    def map_to_normalized(self, raw: Dict[str, Any]) -> List[PageRecord]:
        app_id = FieldNormalizer.parse_int(raw.get("steam_appid"))
        if app_id is None:
            raise ValueError("Steam details payload has no steam_appid")
        return self.map_app(SteamAppListEntry(appid=app_id, name=raw.get("name")), raw, None, None)

    def map_app(
        self,
        app: SteamAppListEntry,
        raw: Dict[str, Any],
        player_count: Optional[int],
        reviews: Optional[SteamReviewSummary],
    ) -> List[PageRecord]:
        details = SteamAppDetails.model_validate(raw)
        name = details.name or app.name
        if not name:
            raise ValueError(f"Steam app {app.appid} has no name")

        record = SteamAppRecord(
            app_id=app.appid,
            name=name,
            type=details.type or "unknown",
            required_age=FieldNormalizer.parse_int(details.required_age),
            is_free=details.is_free,
            short_description=details.short_description,
            detailed_description=details.detailed_description,
            about_the_game=details.about_the_game,
            supported_languages=details.supported_languages,
            header_image=details.header_image,
            capsule_image=details.capsule_image,
            background=details.background,
            website=details.website,
            developers=details.developers or [],
            publishers=details.publishers or [],
            price_overview=details.price_overview,
            platforms=details.platforms,
            metacritic=details.metacritic,
            categories=details.categories,
            genres=details.genres,
            release_date=details.release_date,
            recommendations=details.recommendations.total if details.recommendations else None,
            controller_support=details.controller_support,
            dlc_app_ids=details.dlc or [],
            dlc_count=len(details.dlc or []),
            current_players=player_count,
            review_score=reviews.review_score if reviews else None,
            review_score_desc=reviews.review_score_desc if reviews else None,
            total_positive=reviews.total_positive if reviews else None,
            total_negative=reviews.total_negative if reviews else None,
            total_reviews=reviews.total_reviews if reviews else None,
            last_quick_update=utc_now() if player_count is not None else None,
        )
        records = [PageRecord("steam_apps", app.appid, record)]
        if player_count:
            records.append(self._snapshot(app.appid, player_count, utc_now()))
        return records
