"""
Unit tests for the Steam driver
"""

import pytest
from ingestion.drivers.steam_driver import (
    APP_DETAILS_URL,
    APP_LIST_URL,
    PLAYER_COUNT_URL,
    STEAM_STORE_BASE,
    SteamDriver,
)
from models.base import Source
from schemas.normalized import SteamAppRecord
from tests.fakes import json_response

APP_LIST = {"applist": {"apps": [
    {"appid": 30, "name": "Delisted"},
    {"appid": 10, "name": "Counter-Strike"},
    {"appid": 20, "name": "Team Fortress Classic"},
    {"appid": 10, "name": "Counter-Strike"},
]}}

DETAILS = {
    10: {"type": "game", "name": "Counter-Strike", "is_free": False, "required_age": "0",
         "developers": ["Valve"], "recommendations": {"total": 150000}, "dlc": [11, 12]},
    40: {"type": "dlc", "name": "Soundtrack"},
}

REVIEWS = {"success": 1, "query_summary": {
    "review_score": 9, "review_score_desc": "Overwhelmingly Positive",
    "total_positive": 100, "total_negative": 5, "total_reviews": 105,
}}


def details(request):
    app_id = int(request.url.params["appids"])
    if app_id not in DETAILS:
        return json_response({str(app_id): {"success": False}})
    return json_response({str(app_id): {"success": True, "data": DETAILS[app_id]}})


@pytest.fixture
def driver(source_clients, sink):
    return SteamDriver(source_clients[Source.STEAM], sink)


@pytest.fixture
def api(fake_api):
    fake_api.add(APP_LIST_URL, json_response(APP_LIST))
    fake_api.add(APP_DETAILS_URL, details)
    fake_api.add(PLAYER_COUNT_URL, json_response({"response": {"player_count": 1234, "result": 1}}))
    fake_api.add(f"{STEAM_STORE_BASE}/appreviews/10", json_response(REVIEWS))
    return fake_api


class TestFullSync:

    @pytest.mark.asyncio
    async def test_walks_apps_in_id_order_and_skips_stored(self, driver, api, sink):
        await sink.upsert("steam_apps", 20, SteamAppRecord(app_id=20, name="Team Fortress Classic", type="game"))

        result = await driver.fetch_page(0)

        assert [r.url.params["appids"] for r in api.calls(APP_DETAILS_URL)] == ["10", "30"]
        assert result.next_cursor == 30
        assert result.exhausted is True
        assert result.failed_items == 0
        assert driver.run_metadata() == {"app_list_size": 3, "skipped_existing": 1}

    @pytest.mark.asyncio
    async def test_game_gets_players_and_reviews(self, driver, api):
        result = await driver.fetch_page(0)

        app = result.records[0].record
        assert app.app_id == 10
        assert app.current_players == 1234
        assert app.review_score_desc == "Overwhelmingly Positive"
        assert app.total_reviews == 105
        assert app.recommendations == 150000
        assert app.dlc_count == 2
        assert app.required_age == 0
        assert app.last_quick_update is not None
        assert result.records[1].collection == "steam_player_history"
        assert result.records[1].record.player_count == 1234

    @pytest.mark.asyncio
    async def test_non_game_skips_supplementary_lookups(self, driver, fake_api):
        fake_api.add(APP_LIST_URL, json_response({"applist": {"apps": [{"appid": 40}]}}))
        fake_api.add(APP_DETAILS_URL, details)

        result = await driver.fetch_page(0)

        assert fake_api.calls(PLAYER_COUNT_URL) == []
        app = result.records[0].record
        assert app.type == "dlc"
        assert app.current_players is None
        assert len(result.records) == 1

    @pytest.mark.asyncio
    async def test_failed_supplementary_lookups_keep_the_app(self, driver, api):
        api.add(PLAYER_COUNT_URL, json_response({}, status_code=500))
        api.add(f"{STEAM_STORE_BASE}/appreviews/10", json_response({}, status_code=503))

        result = await driver.fetch_page(0)

        app = result.records[0].record
        assert app.name == "Counter-Strike"
        assert app.current_players is None
        assert app.review_score is None
        assert len(result.records) == 1

    @pytest.mark.asyncio
    async def test_failed_details_count_as_failed(self, driver, api):
        api.add(APP_DETAILS_URL, json_response({}, status_code=500))

        result = await driver.fetch_page(0)

        assert result.records == []
        assert result.failed_items == 3

    @pytest.mark.asyncio
    async def test_cursor_resumes_after_last_app(self, driver, api):
        result = await driver.fetch_page(10)

        assert [r.url.params["appids"] for r in api.calls(APP_DETAILS_URL)] == ["20", "30"]
        assert result.next_cursor == 30
        assert len(api.calls(APP_LIST_URL)) == 1

    @pytest.mark.asyncio
    async def test_past_the_end_is_exhausted(self, driver, api):
        result = await driver.fetch_page(30)

        assert result.exhausted is True
        assert result.next_cursor == 30
        assert api.calls(APP_DETAILS_URL) == []


class TestPlayerCountRefresh:

    @pytest.mark.asyncio
    async def test_refreshes_stored_games(self, driver, fake_api, sink):
        await sink.upsert("steam_apps", 10, SteamAppRecord(app_id=10, name="A", type="game"))
        await sink.upsert("steam_apps", 11, SteamAppRecord(app_id=11, name="B", type="game"))
        await sink.upsert("steam_apps", 12, SteamAppRecord(app_id=12, name="C", type="dlc"))

        def counts(request):
            count = {"10": 50, "11": 0}[request.url.params["appid"]]
            return json_response({"response": {"player_count": count}})

        fake_api.add(PLAYER_COUNT_URL, counts)

        profile = driver.hot_update_profiles()[0]
        result = await driver.fetch_profile(profile)

        assert profile.name == "player_counts"
        assert [(r.collection, r.record.app_id) for r in result.records] == [
            ("steam_app_players", 10),
            ("steam_player_history", 10),
            ("steam_app_players", 11),
        ]
        assert result.exhausted is True

    @pytest.mark.asyncio
    async def test_failed_count_is_counted(self, driver, fake_api, sink):
        await sink.upsert("steam_apps", 10, SteamAppRecord(app_id=10, name="A", type="game"))
        fake_api.add(PLAYER_COUNT_URL, json_response({}, status_code=500))

        result = await driver.fetch_profile(driver.hot_update_profiles()[0])

        assert result.records == []
        assert result.failed_items == 1
