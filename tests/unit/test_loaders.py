"""
Unit tests for the upsert sink
"""

import pytest
from datetime import datetime
from core.exceptions import UpsertError
from ingestion.base import PageRecord
from ingestion.checkpoint_store import AttemptCounters, CheckpointStore
from ingestion.loaders.upsert_sink import UpsertSink, get_collection
from ingestion.runner import SyncOrchestrator
from models.rawg import RawgGame
from schemas.normalized import (
    RawgGameRecord,
    SteamAppRecord,
    SteamPlayerCount,
    SteamPlayerSnapshot,
    TwitchStreamRecord,
)


class TestUpsertSink:
    """Test idempotent, field-preserving writes"""

    @pytest.mark.asyncio
    async def test_same_record_twice_stores_one_row(self, db_session):
        sink = UpsertSink(db_session)
        record = RawgGameRecord(id=3498, title="Grand Theft Auto V", rating=4.47)

        first = await sink.upsert("rawg_games", 3498, record)
        second = await sink.upsert("rawg_games", 3498, record)

        # Assertions
        assert first.created is True
        assert second.created is False
        assert await sink.count("rawg_games") == 1

    @pytest.mark.asyncio
    async def test_missing_field_keeps_stored_value(self, db_session):
        sink = UpsertSink(db_session)
        await sink.upsert("rawg_games", 1, RawgGameRecord(id=1, title="Portal", description="Test chambers"))

        # Listing payloads carry no description
        await sink.upsert("rawg_games", 1, RawgGameRecord(id=1, title="Portal", rating=4.5))

        stored = await sink.get("rawg_games", 1)
        assert stored.description == "Test chambers"
        assert stored.rating == 4.5

    @pytest.mark.asyncio
    async def test_explicit_null_does_not_clear_by_default(self, db_session):
        sink = UpsertSink(db_session)
        await sink.upsert("rawg_games", 1, RawgGameRecord(id=1, title="Portal", metacritic=90))

        await sink.upsert("rawg_games", 1, RawgGameRecord(id=1, title="Portal 1", metacritic=None))

        stored = await sink.get("rawg_games", 1)
        assert stored.metacritic == 90
        assert stored.title == "Portal 1"

    @pytest.mark.asyncio
    async def test_explicit_null_clears_when_collection_allows(self, db_session):
        sink = UpsertSink(db_session)
        await sink.upsert("steam_apps", 10, SteamAppRecord(app_id=10, name="Counter-Strike", type="game", current_players=500))

        await sink.upsert("steam_apps", 10, SteamAppRecord(app_id=10, name="Counter-Strike", type="game", current_players=None))

        stored = await sink.get("steam_apps", 10)
        assert stored.current_players is None

    @pytest.mark.asyncio
    async def test_touch_field_is_stamped(self, db_session):
        sink = UpsertSink(db_session)

        result = await sink.upsert("rawg_games", 5, RawgGameRecord(id=5, title="Braid"))

        assert isinstance(result.record.last_fetched, datetime)

    @pytest.mark.asyncio
    async def test_restricted_update_fields(self, db_session):
        sink = UpsertSink(db_session)
        await sink.upsert("twitch_streams", "s1", TwitchStreamRecord(
            id="s1", game_id="33214", game_name="Fortnite", title="Morning games", viewer_count=100
        ))

        await sink.upsert("twitch_streams", "s1", TwitchStreamRecord(
            id="s1", game_id="33214", game_name="Renamed", title="Evening games", viewer_count=250
        ))

        stored = await sink.get("twitch_streams", "s1")
        assert stored.viewer_count == 250
        assert stored.title == "Evening games"
        assert stored.game_name == "Fortnite"

    @pytest.mark.asyncio
    async def test_player_count_refresh_only_touches_players(self, db_session):
        sink = UpsertSink(db_session)
        await sink.upsert("steam_apps", 570, SteamAppRecord(app_id=570, name="Dota 2", type="game"))

        await sink.upsert("steam_app_players", 570, SteamPlayerCount(app_id=570, current_players=654321))

        stored = await sink.get("steam_apps", 570)
        assert stored.current_players == 654321
        assert stored.name == "Dota 2"
        assert stored.last_quick_update is not None

    @pytest.mark.asyncio
    async def test_insert_only_collection_keeps_first_value(self, db_session):
        sink = UpsertSink(db_session)
        captured_at = datetime(2024, 1, 15, 10, 0, 0)
        key = (730, captured_at)

        await sink.upsert("steam_player_history", key, SteamPlayerSnapshot(app_id=730, player_count=100, captured_at=captured_at))
        second = await sink.upsert("steam_player_history", key, SteamPlayerSnapshot(app_id=730, player_count=999, captured_at=captured_at))

        assert second.created is False
        assert second.record.player_count == 100
        assert await sink.count("steam_player_history") == 1

    @pytest.mark.asyncio
    async def test_failed_write_raises_and_session_stays_usable(self, db_session):
        sink = UpsertSink(db_session)

        # Refreshing players of an app that was never stored violates NOT NULL name
        with pytest.raises(UpsertError) as exc_info:
            await sink.upsert("steam_app_players", 999, SteamPlayerCount(app_id=999, current_players=1))

        assert exc_info.value.context["collection"] == "steam_app_players"
        result = await sink.upsert("rawg_games", 1, RawgGameRecord(id=1, title="Still works"))
        assert result.created is True

    @pytest.mark.asyncio
    async def test_composite_key_must_be_tuple(self, db_session):
        sink = UpsertSink(db_session)

        with pytest.raises(UpsertError):
            await sink.upsert("steam_player_history", 730, SteamPlayerSnapshot(
                app_id=730, player_count=1, captured_at=datetime(2024, 1, 1)
            ))

    @pytest.mark.asyncio
    async def test_unknown_collection_raises_upsert_error(self, db_session):
        sink = UpsertSink(db_session)

        with pytest.raises(UpsertError) as exc_info:
            await sink.upsert("epic_games", 1, RawgGameRecord(id=1, title="Portal"))

        assert exc_info.value.context["collection"] == "epic_games"

    @pytest.mark.asyncio
    async def test_bad_record_does_not_stop_the_page(self, db_session):
        sink = UpsertSink(db_session)
        orchestrator = SyncOrchestrator(CheckpointStore(db_session), sink)
        records = [
            PageRecord("steam_player_history", 730, SteamPlayerSnapshot(
                app_id=730, player_count=1, captured_at=datetime(2024, 1, 1)
            )),
            PageRecord("epic_games", 1, RawgGameRecord(id=1, title="Portal")),
            PageRecord("rawg_games", 2, RawgGameRecord(id=2, title="Braid")),
        ]
        counters = AttemptCounters()

        await orchestrator.write_records(records, counters)

        assert counters.items_failed == 2
        assert counters.items_processed == 1
        assert counters.items_added == 1
        assert await sink.count("rawg_games") == 1


class TestReadHelpers:

    @pytest.mark.asyncio
    async def test_existing_keys_and_query(self, db_session):
        sink = UpsertSink(db_session)
        for game_id in (1, 2, 3):
            await sink.upsert("rawg_games", game_id, RawgGameRecord(id=game_id, title=f"Game {game_id}"))

        assert await sink.existing_keys("rawg_games", [2, 3, 4]) == {2, 3}

        rows = await sink.query("rawg_games", RawgGame.id >= 2, order_by=RawgGame.id.desc(), limit=1)
        assert [row.id for row in rows] == [3]
        assert await sink.count("rawg_games", RawgGame.id < 3) == 2

    def test_unknown_collection(self):
        with pytest.raises(ValueError):
            get_collection("epic_games")
