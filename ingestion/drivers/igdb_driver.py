"""
IGDB driver.

IGDB is queried with Apicalypse bodies POSTed to ``/v4/games``. The cursor
is the offset of the next game; a 400 response past the end of the data
set is IGDB's way of saying there is nothing more.
"""

from datetime import timezone
from typing import Any, Dict, List
import logging

from ingestion.base import IncrementalWindow, PageRecord, PageResult, SourceDriver
from ingestion.fetcher import FetchOutcome, OutcomeKind
from ingestion.transformers.normalizer import FieldNormalizer
from models.base import Source, SyncType
from schemas.normalized import IgdbGameRecord
from schemas.raw import IgdbGamePayload

logger = logging.getLogger(__name__)

IGDB_GAMES_URL = "https://api.igdb.com/v4/games"

HISTORICAL_FIELDS = (
    "id, name, slug, summary, storyline, first_release_date, cover.url, "
    "genres.name, platforms.name, involved_companies.company.name, "
    "involved_companies.developer, involved_companies.publisher, "
    "aggregated_rating, aggregated_rating_count, rating, rating_count, "
    "category, status, screenshots.url"
)

NEW_RELEASE_FIELDS = (
    "id, name, slug, summary, first_release_date, cover.url, "
    "genres.name, platforms.name, involved_companies.company.name, "
    "involved_companies.developer, involved_companies.publisher, "
    "aggregated_rating, aggregated_rating_count"
)


class IgdbDriver(SourceDriver):
    source = Source.IGDB
    supported_sync_types = frozenset({SyncType.HISTORICAL, SyncType.INCREMENTAL})
    primary_collection = "igdb_games"

    async def _query(self, body: str) -> FetchOutcome:
        return await self.client.post(
            IGDB_GAMES_URL,
            content=body,
            headers={"Accept": "application/json", "Content-Type": "text/plain"},
            needs_auth=True,
        )

    def _page_from(self, outcome: FetchOutcome, cursor: int) -> PageResult:
        if outcome.kind is OutcomeKind.FATAL and outcome.status_code == 400:
            logger.info(f"IGDB returned 400 at offset {cursor}, end of data")
            return PageResult(next_cursor=cursor, exhausted=True)

        games = self.expect_ok(outcome, IGDB_GAMES_URL, offset=cursor)
        if not games:
            return PageResult(next_cursor=cursor, exhausted=True)

        result = self.map_items(games)
        result.next_cursor = cursor + len(games)
        return result

    async def fetch_page(self, cursor: int) -> PageResult:
        body = f"fields {HISTORICAL_FIELDS}; limit {self.limits.page_size}; offset {cursor};"
        return self._page_from(await self._query(body), cursor)

    async def fetch_incremental_page(self, cursor: int, window: IncrementalWindow) -> PageResult:
        start = int(window.start.replace(tzinfo=timezone.utc).timestamp())
        end = int(window.end.replace(tzinfo=timezone.utc).timestamp())
        body = (
            f"fields {NEW_RELEASE_FIELDS}; "
            f"where first_release_date > {start} & first_release_date < {end}; "
            f"sort first_release_date desc; "
            f"limit {self.limits.page_size}; offset {cursor};"
        )
        return self._page_from(await self._query(body), cursor)

    def map_to_normalized(self, raw: Dict[str, Any]) -> List[PageRecord]:
        game = IgdbGamePayload.model_validate(raw)
        if not game.name:
            raise ValueError(f"IGDB game {game.id} has no name")

        released = FieldNormalizer.parse_unix_timestamp(game.first_release_date)
        fields: Dict[str, Any] = {
            "id": game.id,
            "name": game.name,
            "slug": game.slug or FieldNormalizer.slugify(game.name),
            "summary": game.summary,
            "first_release_date": released,
            "release_year": released.year if released else None,
            "cover_url": FieldNormalizer.upgrade_image_url(game.cover.url if game.cover else None, "t_cover_big"),
            "aggregated_rating": game.aggregated_rating,
            "aggregated_rating_count": game.aggregated_rating_count,
        }

        # Only the historical query asks for these
        for optional in ("storyline", "rating", "rating_count", "category", "status"):
            if optional in raw:
                fields[optional] = getattr(game, optional)
        if raw.get("genres") is not None:
            fields["genres"] = FieldNormalizer.names(game.genres)
        if raw.get("platforms") is not None:
            fields["platforms"] = FieldNormalizer.names(game.platforms)
        if raw.get("involved_companies") is not None:
            companies = game.involved_companies
            fields["developers"] = [c.company.name for c in companies if c.developer and c.company and c.company.name]
            fields["publishers"] = [c.company.name for c in companies if c.publisher and c.company and c.company.name]
        if raw.get("screenshots") is not None:
            fields["screenshots"] = [
                FieldNormalizer.upgrade_image_url(s.url, "t_screenshot_big")
                for s in game.screenshots if s.url
            ]

        return [PageRecord("igdb_games", game.id, IgdbGameRecord(**fields))]
