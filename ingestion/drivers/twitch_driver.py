"""
Twitch Helix driver.

Historical sync pages through ``/games/top``. For each game it collects live
streams, recent clips and top videos, stores an aggregate game record, a
viewer-history snapshot and every stream and clip. After the page loop the
peak and average viewer figures of every processed game are recomputed
from the viewer history.

Helix pagination cursors are opaque and short lived, so runs always start
from the first page; the stored cursor is the number of pages handled.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple
import math
import logging

from core.exceptions import FatalRequestError, ResourceNotFoundError, RetryableError
from ingestion.base import HotProfile, PageRecord, PageResult, SourceDriver
from ingestion.transformers.normalizer import FieldNormalizer
from models.base import Source, SyncType, utc_now
from models.twitch import TwitchViewerHistory
from schemas.normalized import (
    TwitchClipRecord,
    TwitchGameRecord,
    TwitchStreamRecord,
    TwitchViewerSnapshot,
)
from schemas.raw import TwitchClipPayload, TwitchGamePayload, TwitchStreamPayload, TwitchVideoPayload

logger = logging.getLogger(__name__)

HELIX_BASE_URL = "https://api.twitch.tv/helix"

BOX_ART_SIZE = "285x380"
TOP_STREAMERS = 20
TOP_VIDEOS = 20

HISTORICAL_STREAM_PAGES = 10
HISTORICAL_MAX_STREAMS = 1000
HISTORICAL_CLIP_DAYS = 7
HISTORICAL_MAX_CLIPS = 1000

CURRENT_TOP_GAMES = 100
CURRENT_MAX_STREAMS = 100
CURRENT_CLIP_DAYS = 1


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class TwitchDriver(SourceDriver):
    source = Source.TWITCH
    resumable = False
    supported_sync_types = frozenset({SyncType.HISTORICAL, SyncType.HOT_UPDATE})
    primary_collection = "twitch_games"

    def __init__(self, client, sink):
        super().__init__(client, sink)
        self._after: Optional[str] = None
        self._processed_game_ids: Dict[str, None] = {}
        self._games_failed = 0

    @property
    def processed_game_ids(self) -> List[str]:
        return list(self._processed_game_ids)

    def run_metadata(self) -> Dict[str, Any]:
        return {
            "games_processed": len(self._processed_game_ids),
            "games_failed": self._games_failed,
            "after": self._after,
        }

    async def _helix(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{HELIX_BASE_URL}{endpoint}"
        outcome = await self.client.get(url, params=params, needs_auth=True)
        payload = self.expect_ok(outcome, url, **{k: v for k, v in params.items() if k != "after"})
        return payload if isinstance(payload, dict) else {}

    async def _paginate(
        self,
        endpoint: str,
        params: Dict[str, Any],
        max_pages: int,
        max_items: int,
    ) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        after = None
        for _ in range(max_pages):
            page_params = dict(params)
            if after:
                page_params["after"] = after
            payload = await self._helix(endpoint, page_params)
            data = payload.get("data") or []
            items.extend(data)
            after = (payload.get("pagination") or {}).get("cursor")
            if not data or not after or len(items) >= max_items:
                break
        return items[:max_items]

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    async def fetch_page(self, cursor: int) -> PageResult:
        max_pages = self.limits.max_pages_historical
        if max_pages is not None and cursor >= max_pages:
            logger.info(f"Twitch top-games page cap {max_pages} reached")
            return PageResult(next_cursor=cursor, exhausted=True)
        if cursor > 0 and not self._after:
            return PageResult(next_cursor=cursor, exhausted=True)

        params: Dict[str, Any] = {"first": self.limits.page_size}
        if self._after:
            params["after"] = self._after
        payload = await self._helix("/games/top", params)
        games = payload.get("data") or []

        result = PageResult(next_cursor=cursor + 1)
        for game in games:
            records, failed = await self._collect_game(
                game,
                stream_pages=HISTORICAL_STREAM_PAGES,
                max_streams=HISTORICAL_MAX_STREAMS,
                clip_days=HISTORICAL_CLIP_DAYS,
                with_videos=True,
            )
            result.records.extend(records)
            result.failed_items += int(failed)

        self._after = (payload.get("pagination") or {}).get("cursor")
        result.exhausted = not games or not self._after
        return result

    async def _collect_game(
        self,
        raw_game: Dict[str, Any],
        stream_pages: int,
        max_streams: int,
        clip_days: int,
        with_videos: bool,
    ) -> Tuple[List[PageRecord], bool]:
        game_id = str(raw_game.get("id", ""))
        try:
            streams = await self._paginate(
                "/streams",
                {"game_id": game_id, "first": min(100, max_streams)},
                max_pages=stream_pages,
                max_items=max_streams,
            )
        except (RetryableError, ResourceNotFoundError, FatalRequestError) as e:
            logger.warning(f"Twitch streams for game {game_id} unavailable, skipping game: {e.message}")
            self._games_failed += 1
            return [], True

        started_at = (utc_now() - timedelta(days=clip_days)).strftime("%Y-%m-%dT%H:%M:%SZ")
        clips = await self._optional(
            "clips",
            game_id,
            self._paginate(
                "/clips",
                {"game_id": game_id, "started_at": started_at, "first": 100},
                max_pages=HISTORICAL_MAX_CLIPS // 100,
                max_items=HISTORICAL_MAX_CLIPS,
            ),
        )

        videos = None
        if with_videos:
            videos = await self._optional(
                "videos",
                game_id,
                self._paginate(
                    "/videos",
                    {"game_id": game_id, "first": TOP_VIDEOS, "sort": "views", "type": "all"},
                    max_pages=1,
                    max_items=TOP_VIDEOS,
                ),
            )

        mapped = self.map_items(
            [raw_game],
            lambda raw: self.map_game(raw, streams, clips or [], videos),
        )
        if mapped.failed_items:
            self._games_failed += 1
            return [], True

        self._processed_game_ids.setdefault(game_id, None)
        return mapped.records, False

    async def _optional(self, what: str, game_id: str, request):
        """Clips and videos are best effort; a failed lookup leaves them out."""
        try:
            return await request
        except (RetryableError, ResourceNotFoundError, FatalRequestError) as e:
            logger.warning(f"Twitch {what} for game {game_id} unavailable: {e.message}")
            return None

    # ------------------------------------------------------------------
    # Hot update: current top games
    # ------------------------------------------------------------------

    def hot_update_profiles(self) -> List[HotProfile]:
        return [HotProfile("current_top_games", {"first": CURRENT_TOP_GAMES})]

    async def fetch_profile(self, profile: HotProfile) -> PageResult:
        payload = await self._helix("/games/top", {"first": profile.params.get("first", CURRENT_TOP_GAMES)})
        result = PageResult(exhausted=True)
        for game in payload.get("data") or []:
            records, failed = await self._collect_game(
                game,
                stream_pages=1,
                max_streams=CURRENT_MAX_STREAMS,
                clip_days=CURRENT_CLIP_DAYS,
                with_videos=False,
            )
            result.records.extend(records)
            result.failed_items += int(failed)
        return result

    # ------------------------------------------------------------------
    # Peaks
    # ------------------------------------------------------------------

    async def finalize(self, sync_type: SyncType) -> List[PageRecord]:
        records = []
        for game_id in self._processed_game_ids:
            records.append(await self.peak_record(game_id))
        return records

    async def peak_record(self, game_id: str) -> PageRecord:
        """Peak viewers for today/week/month/all time and daily/weekly/monthly averages."""
        now = utc_now()
        history = await self.sink.query(
            "twitch_viewer_history",
            TwitchViewerHistory.game_id == game_id,
        )

        def window(days: int) -> List[int]:
            since = now - timedelta(days=days)
            return [h.viewers for h in history if h.captured_at >= since]

        day, week, month = window(1), window(7), window(30)
        all_time = [h.viewers for h in history]

        def avg(values: List[int]) -> int:
            return round_half_up(sum(values) / len(values)) if values else 0

        record = TwitchGameRecord(
            id=game_id,
            peak_viewers_today=max(day, default=0),
            peak_viewers_week=max(week, default=0),
            peak_viewers_month=max(month, default=0),
            peak_viewers_all_time=max(all_time, default=0),
            avg_viewers_day=avg(day),
            avg_viewers_week=avg(week),
            avg_viewers_month=avg(month),
        )
        return PageRecord("twitch_games", game_id, record)

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def map_to_normalized(self, raw: Dict[str, Any]) -> List[PageRecord]:
        return self.map_game(raw, [], [], None)

    def map_game(
        self,
        raw_game: Dict[str, Any],
        raw_streams: List[Dict[str, Any]],
        raw_clips: List[Dict[str, Any]],
        raw_videos: Optional[List[Dict[str, Any]]],
    ) -> List[PageRecord]:
        game = TwitchGamePayload.model_validate(raw_game)
        streams = [TwitchStreamPayload.model_validate(s) for s in raw_streams]
        clips = [TwitchClipPayload.model_validate(c) for c in raw_clips]
        captured_at = utc_now()

        total_viewers = sum(s.viewer_count for s in streams)
        languages: Dict[str, Dict[str, int]] = {}
        for stream in streams:
            bucket = languages.setdefault(stream.language or "unknown", {"viewers": 0, "channels": 0})
            bucket["viewers"] += stream.viewer_count
            bucket["channels"] += 1

        top = sorted(streams, key=lambda s: s.viewer_count, reverse=True)[:TOP_STREAMERS]
        fields: Dict[str, Any] = {
            "id": game.id,
            "name": game.name,
            "box_art_url": game.box_art_url.replace("{width}x{height}", BOX_ART_SIZE) if game.box_art_url else None,
            "igdb_id": game.igdb_id or None,
            "current_viewers": total_viewers,
            "current_channels": len(streams),
            "language_breakdown": languages,
            "top_streamers": [
                {
                    "user_id": s.user_id,
                    "user_name": s.user_login,
                    "display_name": s.user_name,
                    "viewers": s.viewer_count,
                    "title": s.title,
                    "language": s.language,
                    "started_at": s.started_at,
                    "thumbnail_url": s.thumbnail_url,
                    "tags": s.tags or [],
                }
                for s in top
            ],
            "tags": FieldNormalizer.unique(tag for s in streams for tag in (s.tags or [])),
        }
        if raw_videos is not None:
            videos = [TwitchVideoPayload.model_validate(v) for v in raw_videos]
            fields["top_videos"] = [
                {
                    "id": v.id,
                    "title": v.title,
                    "user_name": v.user_name,
                    "view_count": v.view_count,
                    "url": v.url,
                    "duration": v.duration,
                    "created_at": v.created_at,
                }
                for v in sorted(videos, key=lambda v: v.view_count, reverse=True)[:TOP_VIDEOS]
            ]

        records = [PageRecord("twitch_games", game.id, TwitchGameRecord(**fields))]

        if total_viewers > 0:
            records.append(PageRecord(
                "twitch_viewer_history",
                (game.id, captured_at),
                TwitchViewerSnapshot(
                    game_id=game.id,
                    viewers=total_viewers,
                    channels=len(streams),
                    captured_at=captured_at,
                ),
            ))

        for stream in streams:
            records.append(PageRecord("twitch_streams", stream.id, TwitchStreamRecord(
                id=stream.id,
                game_id=game.id,
                game_name=stream.game_name,
                user_id=stream.user_id,
                user_name=stream.user_login,
                user_display_name=stream.user_name,
                title=stream.title,
                viewer_count=stream.viewer_count,
                started_at=FieldNormalizer.parse_datetime(stream.started_at),
                language=stream.language,
                thumbnail_url=stream.thumbnail_url,
                tags=stream.tags or [],
                is_mature=bool(stream.is_mature),
            )))

        for clip in clips:
            records.append(PageRecord("twitch_clips", clip.id, TwitchClipRecord(
                id=clip.id,
                game_id=game.id,
                broadcaster_id=clip.broadcaster_id,
                broadcaster_name=clip.broadcaster_name,
                creator_id=clip.creator_id,
                creator_name=clip.creator_name,
                title=clip.title,
                view_count=clip.view_count,
                created_at=FieldNormalizer.parse_datetime(clip.created_at),
                duration=clip.duration,
                thumbnail_url=clip.thumbnail_url,
                embed_url=clip.embed_url,
                url=clip.url,
                video_id=clip.video_id or None,
                vod_offset=clip.vod_offset,
                language=clip.language,
            )))

        return records
