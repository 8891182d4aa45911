"""
RAWG driver.

Historical sync walks ``/games`` page by page (cursor = last page stored).
A 404 on a page skips it; an empty page ends the data set. Incremental sync
pages through games released inside the window, newest first.
"""

from typing import Any, Dict, List, Sequence
import logging

from ingestion.base import IncrementalWindow, PageRecord, PageResult, SourceDriver
from ingestion.fetcher import OutcomeKind
from ingestion.transformers.normalizer import FieldNormalizer
from models.base import Source, SyncType
from schemas.normalized import RawgGameRecord
from schemas.raw import RawgGamePayload, RawgListing

logger = logging.getLogger(__name__)

RAWG_BASE_URL = "https://api.rawg.io/api"

# Raw key -> record field for name lists that are only set when the payload carries them
_NAME_LISTS = {
    "genres": "genres",
    "developers": "developers",
    "publishers": "publishers",
    "tags": "tags",
}


class RawgDriver(SourceDriver):
    source = Source.RAWG
    supported_sync_types = frozenset({SyncType.HISTORICAL, SyncType.INCREMENTAL})
    primary_collection = "rawg_games"

    def _params(self, **extra) -> Dict[str, Any]:
        params = {"page_size": self.limits.page_size, **extra}
        if self.client.api_key:
            params["key"] = self.client.api_key
        return params

    async def fetch_page(self, cursor: int) -> PageResult:
        page = cursor + 1
        url = f"{RAWG_BASE_URL}/games"
        outcome = await self.client.get(url, params=self._params(page=page))

        if outcome.kind is OutcomeKind.NOT_FOUND:
            logger.warning(f"RAWG page {page} not found, skipping")
            return PageResult(next_cursor=page, skipped=True)

        listing = RawgListing.model_validate(self.expect_ok(outcome, url, page=page))
        if not listing.results:
            logger.info(f"RAWG page {page} is empty, historical data exhausted")
            return PageResult(next_cursor=cursor, exhausted=True)

        result = self.map_items(listing.results)
        result.next_cursor = page
        result.exhausted = listing.next is None
        return result

    async def fetch_incremental_page(self, cursor: int, window: IncrementalWindow) -> PageResult:
        page = cursor + 1
        url = f"{RAWG_BASE_URL}/games"
        params = self._params(
            page=page,
            dates=f"{window.start:%Y-%m-%d},{window.end:%Y-%m-%d}",
            ordering="-released",
        )
        outcome = await self.client.get(url, params=params)

        if outcome.kind is OutcomeKind.NOT_FOUND:
            # RAWG answers 404 past the last page of a filtered listing
            return PageResult(next_cursor=cursor, exhausted=True)

        listing = RawgListing.model_validate(self.expect_ok(outcome, url, page=page))
        if not listing.results:
            return PageResult(next_cursor=cursor, exhausted=True)

        result = self.map_items(listing.results)
        result.next_cursor = page
        result.exhausted = listing.next is None
        return result

    async def fetch_details(self, game_ids: Sequence[int]) -> PageResult:
        """Re-fetch full detail payloads (including descriptions) for stored games."""
        result = PageResult()
        for game_id in game_ids:
            url = f"{RAWG_BASE_URL}/games/{game_id}"
            outcome = await self.client.get(url, params=self._params())
            if not outcome.is_ok:
                logger.warning(f"RAWG detail for game {game_id} failed: {outcome.kind.value}")
                result.failed_items += 1
                continue
            mapped = self.map_items([outcome.payload])
            result.records.extend(mapped.records)
            result.failed_items += mapped.failed_items
        return result

    def map_to_normalized(self, raw: Dict[str, Any]) -> List[PageRecord]:
        game = RawgGamePayload.model_validate(raw)
        if not game.name:
            raise ValueError(f"RAWG game {game.id} has no name")

        fields: Dict[str, Any] = {
            "id": game.id,
            "title": game.name,
            "slug": game.slug or FieldNormalizer.slugify(game.name),
            "background_image": game.background_image,
            "metacritic": game.metacritic,
            "rating": game.rating,
            "ratings_count": game.ratings_count,
            "playtime": game.playtime,
            "esrb_rating": game.esrb_rating.name if game.esrb_rating else None,
            "website": game.website or None,
        }

        released = FieldNormalizer.parse_date(game.released)
        fields["released"] = released
        fields["release_year"] = released.year if released else None

        # Listing payloads omit these keys; leave them unset so stored detail data survives
        if "description_raw" in raw:
            fields["description"] = game.description_raw
        for raw_key, field in _NAME_LISTS.items():
            if raw.get(raw_key) is not None:
                fields[field] = FieldNormalizer.names(getattr(game, raw_key))
        if raw.get("platforms") is not None:
            fields["platforms"] = [p.platform.name for p in game.platforms if p.platform and p.platform.name]
        if raw.get("stores") is not None:
            fields["stores"] = [s.store.name for s in game.stores if s.store and s.store.name]
        if raw.get("short_screenshots") is not None:
            fields["screenshots"] = [s.image for s in game.short_screenshots if s.image]

        return [PageRecord("rawg_games", game.id, RawgGameRecord(**fields))]
