"""
CheapShark driver.

Full sync runs in three phases inside one attempt:

1. Deals sweep: stores are refreshed once, then ``/deals`` is paged from the
   cursor (``pageNumber``) until an empty page or the page cap. Every deal is
   stored and its game ID remembered.
2. Game backfill: ``/games?id=`` for every remembered game ID plus stored
   deals whose game has no record yet. Each lookup stores the game and all
   deals it lists.
3. Best deals: up to ``best_deal_page_limit`` pages of ``/deals`` sorted by
   savings, each deal stored.

The cursor only moves during the sweep. A run resumes mid-sweep when the
previous attempt stopped inside it; after a finished sweep the next full
sync starts again at page 0.

Hot updates run a fixed set of one-page deal queries.
"""

from typing import Any, Dict, List, Optional
from sqlalchemy import select
import logging

from ingestion.base import HotProfile, PageRecord, PageResult, SourceDriver
from ingestion.transformers.normalizer import FieldNormalizer
from models.base import Source, SyncType
from models.cheapshark import CheapSharkDeal, CheapSharkGame
from models.sync_attempt import SyncAttempt
from schemas.normalized import CheapSharkDealRecord, CheapSharkGameRecord, CheapSharkStoreRecord
from schemas.raw import (
    CheapSharkDealPayload,
    CheapSharkGameLookup,
    CheapSharkSearchResult,
    CheapSharkStorePayload,
)

logger = logging.getLogger(__name__)

CHEAPSHARK_BASE_URL = "https://www.cheapshark.com/api/1.0"

HOT_PROFILES = [
    HotProfile("aaa_on_sale", {"sortBy": "Savings", "desc": 1, "onSale": 1, "AAA": 1}),
    HotProfile("high_metacritic", {"sortBy": "Deal Rating", "desc": 1, "metacritic": 70}),
    HotProfile("recent_well_rated", {"sortBy": "Recent", "steamRating": 75}),
    HotProfile("under_five", {"sortBy": "Price", "upperPrice": 5}),
    HotProfile("on_sale_by_metacritic", {"sortBy": "Metacritic", "lowerPrice": 0, "onSale": 1}),
    HotProfile("best_savings", {"sortBy": "Savings", "desc": 1}),
]

UNKNOWN_GAME_ID = "unknown"

PHASE_DEALS = "deals"
PHASE_BACKFILL = "backfill"
PHASE_BEST_DEALS = "best_deals"


class CheapSharkDriver(SourceDriver):
    source = Source.CHEAPSHARK
    supported_sync_types = frozenset({SyncType.HISTORICAL, SyncType.HOT_UPDATE})
    primary_collection = "cheapshark_deals"
    best_deal_page_limit = 50

    def __init__(self, client, sink):
        super().__init__(client, sink)
        self.phase = PHASE_DEALS
        self._stores_synced = False
        self._pending: List[PageRecord] = []
        self._game_ids: Dict[str, None] = {}
        self._backfill_queue: List[str] = []
        self._pages_swept = 0
        self._games_backfilled = 0
        self._best_deal_pages = 0

    @property
    def game_ids(self) -> List[str]:
        return list(self._game_ids)

    def run_metadata(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "deal_pages": self._pages_swept,
            "unique_games": len(self._game_ids),
            "games_backfilled": self._games_backfilled,
            "best_deal_pages": self._best_deal_pages,
        }

    def start_cursor(self, latest_cursor: int, previous_attempt: Optional[SyncAttempt] = None) -> int:
        if previous_attempt is None:
            return latest_cursor
        # Attempts that crashed before finishing carry no phase
        phase = (previous_attempt.run_metadata or {}).get("phase", PHASE_DEALS)
        if phase == PHASE_DEALS:
            return previous_attempt.last_cursor or 0
        return 0

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    async def fetch_page(self, cursor: int) -> PageResult:
        if not self._stores_synced:
            self._pending = await self._fetch_stores()
            self._stores_synced = True

        if self.phase == PHASE_DEALS:
            max_pages = self.limits.max_pages_historical
            if max_pages is not None and cursor >= max_pages:
                logger.warning(f"CheapShark deal page cap {max_pages} reached")
                sweep = None
            else:
                sweep = await self._sweep_deals(cursor)
            if sweep is not None:
                return self._with_pending(sweep)
            await self._start_backfill()

        if self.phase == PHASE_BACKFILL:
            if self._backfill_queue:
                return self._with_pending(await self._backfill_chunk(cursor))
            self.phase = PHASE_BEST_DEALS

        return self._with_pending(await self._best_deals_page(cursor))

    def _with_pending(self, result: PageResult) -> PageResult:
        if self._pending:
            result.records = self._pending + result.records
            self._pending = []
        return result

    async def _sweep_deals(self, cursor: int) -> Optional[PageResult]:
        """One deals page, or None once the sweep is over."""
        url = f"{CHEAPSHARK_BASE_URL}/deals"
        params = {"pageNumber": cursor, "pageSize": self.limits.page_size, "sortBy": "Deal Rating"}
        deals = self.expect_ok(await self.client.get(url, params=params), url, page=cursor)

        if not deals:
            logger.info(f"CheapShark deals exhausted at page {cursor} ({len(self._game_ids)} unique games)")
            return None

        result = self.map_items(deals)
        for deal in deals:
            game_id = deal.get("gameID") if isinstance(deal, dict) else None
            if game_id:
                self._game_ids.setdefault(str(game_id), None)

        result.next_cursor = cursor + 1
        self._pages_swept += 1
        return result

    async def _fetch_stores(self) -> List[PageRecord]:
        url = f"{CHEAPSHARK_BASE_URL}/stores"
        outcome = await self.client.get(url)
        if not outcome.is_ok or not isinstance(outcome.payload, list):
            logger.warning(f"CheapShark store refresh failed: {outcome.message or outcome.kind.value}")
            return []
        return self.map_items(outcome.payload, self.map_store).records

    async def _start_backfill(self):
        orphans = await self._orphan_game_ids()
        queue = dict(self._game_ids)
        for game_id in orphans:
            queue.setdefault(game_id, None)
        self._backfill_queue = list(queue)
        self.phase = PHASE_BACKFILL
        logger.info(
            f"CheapShark backfill: {len(self._game_ids)} swept games, "
            f"{len(self._backfill_queue) - len(self._game_ids)} orphaned deal games"
        )

    async def _orphan_game_ids(self) -> List[str]:
        """Game IDs referenced by stored deals that have no game record."""
        stmt = (
            select(CheapSharkDeal.game_id)
            .distinct()
            .where(CheapSharkDeal.game_id != UNKNOWN_GAME_ID)
            .where(~CheapSharkDeal.game_id.in_(select(CheapSharkGame.game_id)))
        )
        result = await self.sink.db.execute(stmt)
        return [game_id for game_id in result.scalars().all() if game_id]

    async def _backfill_chunk(self, cursor: int) -> PageResult:
        chunk = self._backfill_queue[:self.limits.page_size]
        del self._backfill_queue[:len(chunk)]

        result = PageResult(next_cursor=cursor)
        for game_id in chunk:
            looked_up = await self.lookup_game(game_id)
            result.records.extend(looked_up.records)
            result.failed_items += looked_up.failed_items
            self._games_backfilled += 1
        return result

    async def _best_deals_page(self, cursor: int) -> PageResult:
        """One page of deals by savings; the pass ends on an empty page or the page limit."""
        url = f"{CHEAPSHARK_BASE_URL}/deals"
        params = {
            "pageNumber": self._best_deal_pages,
            "pageSize": self.limits.page_size,
            "sortBy": "Savings",
            "desc": 1,
        }
        deals = self.expect_ok(await self.client.get(url, params=params), url, page=self._best_deal_pages)

        if not deals:
            return PageResult(next_cursor=cursor, exhausted=True)

        result = self.map_items(deals)
        result.next_cursor = cursor
        self._best_deal_pages += 1
        result.exhausted = self._best_deal_pages >= self.best_deal_page_limit
        return result

    async def lookup_game(self, game_id: str) -> PageResult:
        """Fetch ``/games?id=`` and map the game plus every deal it lists."""
        url = f"{CHEAPSHARK_BASE_URL}/games"
        outcome = await self.client.get(url, params={"id": game_id})
        if not outcome.is_ok or not isinstance(outcome.payload, dict):
            logger.warning(f"CheapShark lookup for game {game_id} failed: {outcome.message or outcome.kind.value}")
            return PageResult(failed_items=1)
        return self.map_items([outcome.payload], lambda payload: self.map_game_lookup(game_id, payload))

    # ------------------------------------------------------------------
    # Hot update / search
    # ------------------------------------------------------------------

    def hot_update_profiles(self) -> List[HotProfile]:
        return list(HOT_PROFILES)

    async def fetch_profile(self, profile: HotProfile) -> PageResult:
        url = f"{CHEAPSHARK_BASE_URL}/deals"
        params = {"pageSize": self.limits.page_size, **profile.params}
        deals = self.expect_ok(await self.client.get(url, params=params), url, profile=profile.name)
        result = self.map_items(deals or [])
        result.exhausted = True
        return result

    async def search(self, title: str, limit: int = 20) -> PageResult:
        """Find games by title and map full lookups for each match."""
        url = f"{CHEAPSHARK_BASE_URL}/games"
        matches = self.expect_ok(await self.client.get(url, params={"title": title, "limit": limit}), url)

        result = PageResult(exhausted=True)
        for match in matches or []:
            game = CheapSharkSearchResult.model_validate(match)
            looked_up = await self.lookup_game(game.gameID)
            result.records.extend(looked_up.records)
            result.failed_items += looked_up.failed_items
        return result

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def map_to_normalized(self, raw: Dict[str, Any]) -> List[PageRecord]:
        return [self.map_deal(raw)]

    def map_store(self, raw: Dict[str, Any]) -> List[PageRecord]:
        store = CheapSharkStorePayload.model_validate(raw)
        images = store.images
        record = CheapSharkStoreRecord(
            store_id=store.storeID,
            store_name=store.storeName or store.storeID,
            is_active=FieldNormalizer.parse_int(store.isActive) == 1,
            images={
                "banner": images.banner if images else None,
                "logo": images.logo if images else None,
                "icon": images.icon if images else None,
            },
        )
        return [PageRecord("cheapshark_stores", store.storeID, record)]

    def map_deal(
        self,
        raw: Dict[str, Any],
        game_id: Optional[str] = None,
        game_title: Optional[str] = None,
    ) -> PageRecord:
        deal = CheapSharkDealPayload.model_validate(raw)
        game_id = deal.gameID or game_id
        price = deal.price if deal.price is not None else deal.salePrice
        # Deals listed inside a game lookup may lack a dealID
        deal_id = deal.dealID or f"{deal.storeID}_{game_id}_{price}"

        sale_source = deal.salePrice or deal.price
        normal_source = deal.normalPrice or deal.retailPrice
        if deal.savings:
            savings = FieldNormalizer.parse_float(deal.savings)
        else:
            savings = float(FieldNormalizer.calculate_savings(sale_source, normal_source))

        record = CheapSharkDealRecord(
            deal_id=deal_id,
            game_id=game_id,
            title=deal.title or game_title,
            store_id=deal.storeID,
            store_name=deal.storeName,
            sale_price=FieldNormalizer.parse_float(sale_source) or 0.0,
            normal_price=FieldNormalizer.parse_float(normal_source) or 0.0,
            savings=savings,
            is_on_sale=FieldNormalizer.parse_is_on_sale(raw.get("isOnSale")),
            metacritic_score=FieldNormalizer.parse_int(deal.metacriticScore),
            metacritic_link=deal.metacriticLink,
            steam_rating_text=deal.steamRatingText,
            steam_rating_percent=FieldNormalizer.parse_int(deal.steamRatingPercent),
            steam_rating_count=FieldNormalizer.parse_int(deal.steamRatingCount),
            steam_app_id=deal.steamAppID,
            release_date=FieldNormalizer.parse_unix_timestamp(deal.releaseDate),
            last_change=FieldNormalizer.parse_unix_timestamp(deal.lastChange),
            deal_rating=FieldNormalizer.parse_float(deal.dealRating),
            thumb=deal.thumb,
        )
        return PageRecord("cheapshark_deals", deal_id, record)

    def map_game_lookup(self, game_id: str, raw: Dict[str, Any]) -> List[PageRecord]:
        lookup = CheapSharkGameLookup.model_validate(raw)
        info = lookup.info
        cheapest = lookup.cheapestPriceEver
        cheapest_price = FieldNormalizer.parse_float(cheapest.price) if cheapest else None
        title = info.title if info else None

        game = CheapSharkGameRecord(
            game_id=game_id,
            title=title,
            steam_app_id=info.steamAppID if info else None,
            thumb=info.thumb if info else None,
            cheapest=cheapest_price,
            cheapest_deal_id=cheapest.dealID if cheapest else None,
            historical_low=cheapest_price,
            historical_low_date=FieldNormalizer.parse_unix_timestamp(cheapest.date) if cheapest else None,
            store_ids=FieldNormalizer.unique(d.storeID for d in lookup.deals),
        )

        records = [PageRecord("cheapshark_games", game_id, game)]
        for deal_raw in raw.get("deals") or []:
            records.append(self.map_deal(deal_raw, game_id=game_id, game_title=title))
        return records
