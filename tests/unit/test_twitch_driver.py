"""
Unit tests for the Twitch driver
"""

import pytest
from datetime import timedelta
from ingestion.drivers.twitch_driver import HELIX_BASE_URL, TwitchDriver, round_half_up
from models.base import Source, SyncType, utc_now
from schemas.normalized import TwitchGameRecord, TwitchViewerSnapshot
from tests.fakes import json_response

TOP_URL = f"{HELIX_BASE_URL}/games/top"
STREAMS_URL = f"{HELIX_BASE_URL}/streams"
CLIPS_URL = f"{HELIX_BASE_URL}/clips"
VIDEOS_URL = f"{HELIX_BASE_URL}/videos"

GAMES = [
    {"id": "1", "name": "Just Chatting", "box_art_url": "https://cdn/1-{width}x{height}.jpg", "igdb_id": ""},
    {"id": "2", "name": "Broken", "box_art_url": None},
]

STREAMS = [
    {"id": "s1", "user_id": "u1", "user_login": "alpha", "user_name": "Alpha", "viewer_count": 300,
     "language": "en", "tags": ["English"], "started_at": "2024-03-01T10:00:00Z"},
    {"id": "s2", "user_id": "u2", "user_login": "beta", "user_name": "Beta", "viewer_count": 150,
     "language": "de", "tags": ["Deutsch", "English"]},
]


@pytest.fixture
def driver(source_clients, sink):
    return TwitchDriver(source_clients[Source.TWITCH], sink)


@pytest.fixture
def api(fake_api):
    def top(request):
        if request.url.params.get("after") == "page-2":
            return json_response({"data": [], "pagination": {}})
        return json_response({"data": GAMES, "pagination": {"cursor": "page-2"}})

    def streams(request):
        if request.url.params["game_id"] == "2":
            return json_response({"error": "Internal Server Error"}, status_code=500)
        return json_response({"data": STREAMS, "pagination": {}})

    fake_api.add(TOP_URL, top)
    fake_api.add(STREAMS_URL, streams)
    fake_api.add(CLIPS_URL, json_response({"data": [{"id": "c1", "title": "Clip", "view_count": 42, "duration": 29.9}]}))
    fake_api.add(VIDEOS_URL, json_response({"data": [
        {"id": "v1", "title": "Low", "view_count": 5},
        {"id": "v2", "title": "High", "view_count": 500},
    ]}))
    return fake_api


def test_round_half_up():
    assert round_half_up(200.5) == 201
    assert round_half_up(2.5) == 3
    assert round_half_up(300.33) == 300


class TestTopGamesPage:

    @pytest.mark.asyncio
    async def test_game_aggregate(self, driver, api):
        result = await driver.fetch_page(0)

        game = next(r.record for r in result.records if r.collection == "twitch_games")
        assert game.box_art_url == "https://cdn/1-285x380.jpg"
        assert game.igdb_id is None
        assert game.current_viewers == 450
        assert game.current_channels == 2
        assert game.language_breakdown == {
            "en": {"viewers": 300, "channels": 1},
            "de": {"viewers": 150, "channels": 1},
        }
        assert [s["user_name"] for s in game.top_streamers] == ["alpha", "beta"]
        assert game.tags == ["English", "Deutsch"]
        assert [v["id"] for v in game.top_videos] == ["v2", "v1"]

    @pytest.mark.asyncio
    async def test_records_per_game(self, driver, api):
        result = await driver.fetch_page(0)

        collections = [r.collection for r in result.records]
        assert collections == [
            "twitch_games", "twitch_viewer_history", "twitch_streams", "twitch_streams", "twitch_clips"
        ]
        snapshot = result.records[1].record
        assert snapshot.viewers == 450
        assert snapshot.channels == 2

    @pytest.mark.asyncio
    async def test_stream_failure_skips_only_that_game(self, driver, api):
        result = await driver.fetch_page(0)

        assert result.failed_items == 1
        assert driver.processed_game_ids == ["1"]
        assert driver.run_metadata()["games_failed"] == 1
        assert api.calls(CLIPS_URL)[0].url.params["game_id"] == "1"

    @pytest.mark.asyncio
    async def test_pages_follow_helix_cursor(self, driver, api):
        first = await driver.fetch_page(0)
        second = await driver.fetch_page(1)

        assert first.next_cursor == 1
        assert first.exhausted is False
        assert second.exhausted is True
        assert api.calls(TOP_URL)[1].url.params["after"] == "page-2"

    @pytest.mark.asyncio
    async def test_run_restarts_from_first_page(self, driver, api):
        assert driver.start_cursor(12) == 0

        result = await driver.fetch_page(12)

        assert result.exhausted is True
        assert api.calls(TOP_URL) == []

    @pytest.mark.asyncio
    async def test_helix_requests_are_authenticated(self, driver, api):
        await driver.fetch_page(0)

        request = api.calls(TOP_URL)[0]
        assert request.headers["Client-ID"] == "twitch-id"
        assert request.headers["Authorization"] == "Bearer test-token"

    @pytest.mark.asyncio
    async def test_clip_failure_keeps_game(self, driver, api):
        api.add(CLIPS_URL, json_response({}, status_code=500))

        result = await driver.fetch_page(0)

        assert "twitch_clips" not in [r.collection for r in result.records]
        assert driver.processed_game_ids == ["1"]


class TestHotUpdate:

    @pytest.mark.asyncio
    async def test_current_top_games_without_videos(self, driver, api):
        profile = driver.hot_update_profiles()[0]

        result = await driver.fetch_profile(profile)

        assert profile.name == "current_top_games"
        assert api.calls(TOP_URL)[0].url.params["first"] == "100"
        assert api.calls(VIDEOS_URL) == []
        game = next(r.record for r in result.records if r.collection == "twitch_games")
        assert "top_videos" not in game.model_dump(exclude_unset=True)
        assert result.exhausted is True


class TestPeaks:

    @pytest.mark.asyncio
    async def test_peaks_and_averages_from_history(self, driver, sink):
        now = utc_now()
        await sink.upsert("twitch_games", "1", TwitchGameRecord(id="1", name="Game"))
        for hours_ago, viewers in [(2, 100), (72, 301), (480, 500), (1440, 900)]:
            captured_at = now - timedelta(hours=hours_ago)
            await sink.upsert(
                "twitch_viewer_history",
                ("1", captured_at),
                TwitchViewerSnapshot(game_id="1", viewers=viewers, captured_at=captured_at),
            )

        record = (await driver.peak_record("1")).record

        assert record.peak_viewers_today == 100
        assert record.peak_viewers_week == 301
        assert record.peak_viewers_month == 500
        assert record.peak_viewers_all_time == 900
        assert record.avg_viewers_day == 100
        assert record.avg_viewers_week == 201
        assert record.avg_viewers_month == 300

    @pytest.mark.asyncio
    async def test_no_history_means_zero(self, driver):
        record = (await driver.peak_record("404")).record

        assert record.peak_viewers_all_time == 0
        assert record.avg_viewers_week == 0

    @pytest.mark.asyncio
    async def test_finalize_covers_processed_games(self, driver, api):
        await driver.fetch_page(0)

        records = await driver.finalize(SyncType.HISTORICAL)

        assert [r.key for r in records] == ["1"]
        assert "name" not in records[0].record.model_dump(exclude_unset=True)
