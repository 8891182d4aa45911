"""
Integration tests: orchestrated sync runs against fake source APIs and a real database
"""

import pytest
from core.exceptions import FatalRequestError, UnsupportedSyncError
from ingestion.checkpoint_store import AttemptCounters, CheckpointStore
from ingestion.checkpoint_store import ABANDONED_MESSAGE
from ingestion.drivers.cheapshark_driver import CHEAPSHARK_BASE_URL
from ingestion.drivers.rawg_driver import RAWG_BASE_URL
from ingestion.sync_service import SyncService
from models.base import Source, SyncStatus, SyncType
from tests.fakes import json_response

RAWG_GAMES_URL = f"{RAWG_BASE_URL}/games"


def with_limits(app_settings, source, **changes):
    limits = dict(app_settings.SOURCE_LIMITS)
    limits[source] = limits[source].model_copy(update=changes)
    return app_settings.model_copy(update={"SOURCE_LIMITS": limits})


def rawg_page(request, last_page=None):
    page = int(request.url.params["page"])
    has_next = last_page is None or page < last_page
    return json_response({
        "next": f"{RAWG_GAMES_URL}?page={page + 1}" if has_next else None,
        "results": [{"id": page * 100 + i, "name": f"Game {page}-{i}"} for i in range(2)],
    })


def server_error(request):
    return json_response({"detail": "upstream down"}, status_code=500)


class TestResumability:

    @pytest.mark.asyncio
    async def test_new_run_continues_after_stored_cursor(self, sync_service, db_session, fake_api):
        # A crashed run left its attempt running with the cursor at page 50
        store = CheckpointStore(db_session)
        crashed = await store.begin_attempt(Source.RAWG, SyncType.HISTORICAL, 0)
        await store.advance(crashed, 50, AttemptCounters(items_processed=2000))
        fake_api.add(RAWG_GAMES_URL, lambda request: rawg_page(request, last_page=51))

        summary = await sync_service.perform_full_sync(Source.RAWG)

        assert fake_api.calls(RAWG_GAMES_URL)[0].url.params["page"] == "51"
        assert summary.status == SyncStatus.COMPLETED
        assert summary.start_cursor == 50
        assert summary.last_cursor == 51
        assert summary.items_processed == 2
        assert summary.metadata["stop_reason"] == "exhausted"

        old = await store.get_attempt(crashed)
        assert old.status == SyncStatus.FAILED
        assert old.error_message == ABANDONED_MESSAGE

    @pytest.mark.asyncio
    async def test_rerun_of_the_same_pages_adds_nothing(self, sync_service, fake_api):
        fake_api.add(RAWG_GAMES_URL, lambda request: rawg_page(request, last_page=2))
        first = await sync_service.perform_full_sync(Source.RAWG)

        # Replaying from the start stores the same rows again
        driver = sync_service.driver(Source.RAWG)
        page = await driver.fetch_page(0)
        counters = AttemptCounters()
        await sync_service.orchestrator.write_records(page.records, counters)

        assert first.items_added == 4
        assert counters.items_processed == 2
        assert counters.items_added == 0
        assert await sync_service.sink.count("rawg_games") == 4


class TestErrorBudget:

    @pytest.mark.asyncio
    async def test_consecutive_errors_fail_the_attempt(self, sync_service, fake_api):
        fake_api.add(RAWG_GAMES_URL, server_error)

        summary = await sync_service.perform_full_sync(Source.RAWG)

        assert summary.status == SyncStatus.FAILED
        assert summary.error_message == "5 consecutive errors"
        assert summary.metadata["stop_reason"] == "error_budget"
        assert len(fake_api.calls(RAWG_GAMES_URL)) == 5
        assert await sync_service.checkpoints.latest_cursor(Source.RAWG, SyncType.HISTORICAL) == 0

    @pytest.mark.asyncio
    async def test_success_resets_the_error_count(self, sync_service, fake_api):
        responses = iter([False, False, False, True, False, False, False, False])

        def flaky(request):
            if next(responses, True):
                return rawg_page(request, last_page=2)
            return server_error(request)

        fake_api.add(RAWG_GAMES_URL, flaky)

        summary = await sync_service.perform_full_sync(Source.RAWG)

        # Three failures, one page, then four more failures: never five in a row
        assert summary.status == SyncStatus.COMPLETED
        assert summary.last_cursor == 2
        assert len(fake_api.calls(RAWG_GAMES_URL)) == 9

    @pytest.mark.asyncio
    async def test_backoff_grows_between_errors(self, db_session, http_client, test_settings, fake_api, no_sleep):
        app_settings = test_settings.model_copy(
            update={"ERROR_BACKOFF_SECONDS": 1.0, "MAX_ERROR_BACKOFF_SECONDS": 3.0}
        )
        service = SyncService(db_session, http_client, app_settings, sleep=no_sleep)
        fake_api.add(RAWG_GAMES_URL, server_error)

        await service.perform_full_sync(Source.RAWG)

        delays = [call.args[0] for call in no_sleep.await_args_list if call.args and call.args[0] >= 1.0]
        assert delays == [1.0, 2.0, 3.0, 3.0]

    @pytest.mark.asyncio
    async def test_rate_limited_pages_do_not_use_the_error_budget(self, sync_service, fake_api):
        # Five page attempts in a row each use up the client's 429 retries (4 calls)
        throttled = [json_response({"detail": "slow down"}, status_code=429) for _ in range(20)]
        last_page = json_response({"next": None, "results": [{"id": 1, "name": "Portal"}, {"id": 2, "name": "Braid"}]})
        fake_api.add(RAWG_GAMES_URL, throttled + [last_page])

        summary = await sync_service.perform_full_sync(Source.RAWG)

        assert summary.status == SyncStatus.COMPLETED
        assert summary.metadata["stop_reason"] == "exhausted"
        assert summary.items_processed == 2
        assert summary.last_cursor == 1
        assert len(fake_api.calls(RAWG_GAMES_URL)) == 21


class TestSkippedPages:

    @staticmethod
    def two_pages_then_404(request):
        if int(request.url.params["page"]) <= 2:
            return rawg_page(request)
        return json_response({"detail": "Invalid page."}, status_code=404)

    @pytest.mark.asyncio
    async def test_run_of_404s_ends_the_sync(self, db_session, http_client, test_settings, fake_api, no_sleep):
        app_settings = with_limits(test_settings, "rawg", max_calls=60)
        service = SyncService(db_session, http_client, app_settings, sleep=no_sleep)
        fake_api.add(RAWG_GAMES_URL, self.two_pages_then_404)

        summary = await service.perform_full_sync(Source.RAWG)

        assert summary.status == SyncStatus.COMPLETED
        assert summary.metadata["stop_reason"] == "not_found"
        assert summary.metadata["calls"] == 7
        assert summary.last_cursor == 2
        assert summary.items_processed == 4

    @pytest.mark.asyncio
    async def test_repeat_sync_keeps_cursor_at_last_page_with_data(
        self, db_session, http_client, test_settings, fake_api, no_sleep
    ):
        app_settings = with_limits(test_settings, "rawg", max_calls=60)
        service = SyncService(db_session, http_client, app_settings, sleep=no_sleep)
        fake_api.add(RAWG_GAMES_URL, self.two_pages_then_404)
        await service.perform_full_sync(Source.RAWG)
        seen = len(fake_api.calls(RAWG_GAMES_URL))

        second = await service.perform_full_sync(Source.RAWG)

        pages = [r.url.params["page"] for r in fake_api.calls(RAWG_GAMES_URL)[seen:]]
        assert pages == ["3", "4", "5", "6", "7"]
        assert second.status == SyncStatus.COMPLETED
        assert second.metadata["stop_reason"] == "not_found"
        assert await service.checkpoints.latest_cursor(Source.RAWG, SyncType.HISTORICAL) == 2

    @pytest.mark.asyncio
    async def test_data_after_a_skipped_page_moves_the_cursor(self, sync_service, fake_api):
        def gap_at_page_two(request):
            if request.url.params["page"] == "2":
                return json_response({"detail": "Invalid page."}, status_code=404)
            return rawg_page(request, last_page=3)

        fake_api.add(RAWG_GAMES_URL, gap_at_page_two)

        summary = await sync_service.perform_full_sync(Source.RAWG)

        assert summary.status == SyncStatus.COMPLETED
        assert summary.metadata["stop_reason"] == "exhausted"
        assert summary.last_cursor == 3
        assert summary.items_processed == 4


class TestRunBounds:

    @pytest.mark.asyncio
    async def test_call_budget_ends_run_successfully(self, db_session, http_client, test_settings, fake_api, no_sleep):
        app_settings = with_limits(test_settings, "rawg", max_calls=3)
        service = SyncService(db_session, http_client, app_settings, sleep=no_sleep)
        fake_api.add(RAWG_GAMES_URL, rawg_page)

        summary = await service.perform_full_sync(Source.RAWG)

        assert summary.status == SyncStatus.COMPLETED
        assert summary.metadata["stop_reason"] == "call_budget"
        assert summary.metadata["calls"] == 3
        assert summary.last_cursor == 3

    @pytest.mark.asyncio
    async def test_incremental_page_cap(self, db_session, http_client, test_settings, fake_api, no_sleep):
        app_settings = with_limits(test_settings, "rawg", max_pages_incremental=2)
        service = SyncService(db_session, http_client, app_settings, sleep=no_sleep)
        fake_api.add(RAWG_GAMES_URL, rawg_page)

        summary = await service.perform_incremental_sync(Source.RAWG)

        assert summary.status == SyncStatus.COMPLETED
        assert summary.metadata["stop_reason"] == "page_cap"
        assert summary.metadata["pages"] == 2
        assert "window_start" in summary.metadata
        assert fake_api.calls(RAWG_GAMES_URL)[0].url.params["ordering"] == "-released"

    @pytest.mark.asyncio
    async def test_next_incremental_window_starts_at_last_success(self, sync_service, fake_api):
        fake_api.add(RAWG_GAMES_URL, lambda request: rawg_page(request, last_page=1))
        first = await sync_service.perform_incremental_sync(Source.RAWG)
        attempt = await sync_service.checkpoints.get_attempt(first.attempt_id)

        window = await sync_service.orchestrator.incremental_window(sync_service.driver(Source.RAWG))

        assert window.start == attempt.started_at


class TestStopAndFatal:

    @pytest.mark.asyncio
    async def test_stop_request_ends_after_current_page(self, sync_service, fake_api):
        def page_then_stop(request):
            sync_service.request_stop()
            return rawg_page(request)

        fake_api.add(RAWG_GAMES_URL, page_then_stop)

        summary = await sync_service.perform_full_sync(Source.RAWG)

        assert summary.status == SyncStatus.FAILED
        assert summary.error_message == "Stopped by request"
        assert summary.metadata["stop_reason"] == "stopped"
        assert summary.last_cursor == 1
        assert summary.items_processed == 2

    @pytest.mark.asyncio
    async def test_fatal_response_fails_and_raises(self, sync_service, fake_api):
        fake_api.add(RAWG_GAMES_URL, lambda request: json_response({"error": "bad key"}, status_code=403))

        with pytest.raises(FatalRequestError):
            await sync_service.perform_full_sync(Source.RAWG)

        attempts = await sync_service.checkpoints.recent_attempts(Source.RAWG)
        assert attempts[0].status == SyncStatus.FAILED
        assert "403" in attempts[0].error_message
        assert len(fake_api.calls(RAWG_GAMES_URL)) == 1

    @pytest.mark.asyncio
    async def test_unsupported_pair_creates_no_attempt(self, sync_service):
        with pytest.raises(UnsupportedSyncError):
            await sync_service.perform_incremental_sync(Source.CHEAPSHARK)

        assert await sync_service.checkpoints.recent_attempts(Source.CHEAPSHARK) == []


class TestCheapSharkEndToEnd:

    @pytest.fixture
    def deal_pages(self):
        return {
            "0": [
                {"dealID": "d1", "gameID": "A", "storeID": "1", "salePrice": "5.00", "normalPrice": "10.00"},
                {"dealID": "d2", "gameID": "B", "storeID": "1", "salePrice": "5.00", "normalPrice": "6.00"},
            ],
            "1": [
                {"dealID": "d3", "gameID": "B", "storeID": "2", "salePrice": "1.00", "normalPrice": "2.00"},
                {"dealID": "d4", "gameID": "C", "storeID": "2", "salePrice": "3.00", "normalPrice": "3.00"},
            ],
        }

    @pytest.fixture
    def api(self, fake_api, deal_pages):
        def deals(request):
            return json_response(deal_pages.get(request.url.params.get("pageNumber", "0"), []))

        def lookup(request):
            game_id = request.url.params["id"]
            return json_response({
                "info": {"title": f"Title {game_id}"},
                "cheapestPriceEver": {"price": "0.99", "date": 1500000000},
                "deals": [{"storeID": "3", "dealID": f"lookup-{game_id}", "price": "2.00", "retailPrice": "4.00"}],
            })

        fake_api.add(f"{CHEAPSHARK_BASE_URL}/stores", lambda request: json_response([
            {"storeID": "1", "storeName": "Steam", "isActive": 1},
            {"storeID": "2", "storeName": "GOG", "isActive": 1},
            {"storeID": "3", "storeName": "Humble", "isActive": 0},
        ]))
        fake_api.add(f"{CHEAPSHARK_BASE_URL}/deals", deals)
        fake_api.add(f"{CHEAPSHARK_BASE_URL}/games", lookup)
        return fake_api

    @staticmethod
    def sweep_pages(requests):
        return [
            r.url.params["pageNumber"] for r in requests
            if r.url.path.endswith("/deals") and r.url.params.get("sortBy") == "Deal Rating"
        ]

    @pytest.mark.asyncio
    async def test_deal_sweep_backfill_and_best_deals(self, sync_service, api):
        summary = await sync_service.perform_full_sync(Source.CHEAPSHARK)

        assert summary.status == SyncStatus.COMPLETED
        assert summary.last_cursor == 2
        # stores + 3 sweep pages + 3 lookups + 3 best-deal pages
        assert summary.metadata["calls"] == 10
        assert summary.metadata["phase"] == "best_deals"
        assert summary.metadata["unique_games"] == 3
        assert summary.metadata["best_deal_pages"] == 2
        assert summary.items_processed == 3 + 4 + 3 + 3 + 4
        assert summary.items_failed == 0

        best = [r.url.params for r in api.calls(f"{CHEAPSHARK_BASE_URL}/deals") if r.url.params["sortBy"] == "Savings"]
        assert [p["pageNumber"] for p in best] == ["0", "1", "2"]
        assert all(p["desc"] == "1" for p in best)

        sink = sync_service.sink
        assert await sink.count("cheapshark_stores") == 3
        assert await sink.count("cheapshark_games") == 3
        assert await sink.count("cheapshark_deals") == 7

        d2 = await sink.get("cheapshark_deals", "d2")
        assert d2.savings == 17.0
        game_b = await sink.get("cheapshark_games", "B")
        assert game_b.title == "Title B"
        assert game_b.historical_low == 0.99

        stats = await sync_service.get_sync_stats(Source.CHEAPSHARK)
        assert stats.cursor == 2
        assert stats.total_records == 7
        assert stats.record_counts == {"cheapshark_stores": 3, "cheapshark_games": 3, "cheapshark_deals": 7}

    @pytest.mark.asyncio
    async def test_next_full_sync_sweeps_from_first_page(self, sync_service, api, deal_pages):
        await sync_service.perform_full_sync(Source.CHEAPSHARK)
        seen = len(api.requests)
        deal_pages["0"][0]["salePrice"] = "1.00"

        second = await sync_service.perform_full_sync(Source.CHEAPSHARK)

        assert second.status == SyncStatus.COMPLETED
        assert second.start_cursor == 0
        assert self.sweep_pages(api.requests[seen:]) == ["0", "1", "2"]
        assert (await sync_service.sink.get("cheapshark_deals", "d1")).sale_price == 1.0

    @pytest.mark.asyncio
    async def test_interrupted_sweep_resumes_at_its_cursor(self, sync_service, api, deal_pages):
        def stop_after_first_page(request):
            sync_service.request_stop()
            return json_response(deal_pages.get(request.url.params["pageNumber"], []))

        api.add(f"{CHEAPSHARK_BASE_URL}/deals", stop_after_first_page)
        stopped = await sync_service.perform_full_sync(Source.CHEAPSHARK)
        assert stopped.status == SyncStatus.FAILED
        assert stopped.metadata["phase"] == "deals"
        assert stopped.last_cursor == 1

        sync_service.orchestrator.stop_event.clear()
        api.add(f"{CHEAPSHARK_BASE_URL}/deals", lambda request: json_response(
            deal_pages.get(request.url.params["pageNumber"], [])
        ))
        seen = len(api.requests)

        resumed = await sync_service.perform_full_sync(Source.CHEAPSHARK)

        assert resumed.status == SyncStatus.COMPLETED
        assert resumed.start_cursor == 1
        assert self.sweep_pages(api.requests[seen:]) == ["1", "2"]

    @pytest.mark.asyncio
    async def test_hot_update_runs_every_profile(self, sync_service, api):
        summary = await sync_service.perform_hot_update_sync(Source.CHEAPSHARK)

        assert summary.status == SyncStatus.COMPLETED
        assert summary.last_cursor == 6
        assert len(summary.metadata["profiles"]) == 6
        assert len(api.calls(f"{CHEAPSHARK_BASE_URL}/deals")) == 6


class TestServiceOperations:

    @pytest.mark.asyncio
    async def test_stats_for_partial_rawg_sync(self, sync_service, fake_api):
        fake_api.add(RAWG_GAMES_URL, lambda request: rawg_page(request, last_page=2))
        await sync_service.perform_full_sync(Source.RAWG)

        stats = await sync_service.get_sync_stats(Source.RAWG)

        assert stats.total_records == 4
        assert stats.cursor == 2
        assert stats.estimated_total == 850000
        assert stats.percent_complete == 0.0
        assert stats.calls_needed == 21250
        assert set(stats.last_success_at) == {"historical", "incremental"}
        assert stats.last_success_at["historical"] is not None
        assert stats.last_success_at["incremental"] is None
        assert stats.recent_attempts[0].status == SyncStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_refresh_rawg_games_in_id_range(self, sync_service, fake_api):
        fake_api.add(RAWG_GAMES_URL, lambda request: rawg_page(request, last_page=1))
        await sync_service.perform_full_sync(Source.RAWG)
        fake_api.add(f"{RAWG_GAMES_URL}/100", json_response({"id": 100, "name": "Game 1-0", "description_raw": "Full text"}))

        result = await sync_service.refresh_rawg_games(100, 150)

        assert result["requested"] == 2
        assert result["items_processed"] == 1
        assert result["items_failed"] == 1
        game = await sync_service.sink.get("rawg_games", 100)
        assert game.description == "Full text"

    @pytest.mark.asyncio
    async def test_cheapshark_search_stores_matches(self, sync_service, fake_api):
        def games(request):
            if "title" in request.url.params:
                return json_response([{"gameID": "612"}])
            return json_response({"info": {"title": "Portal"}, "deals": [
                {"storeID": "1", "dealID": "p1", "price": "1.99", "retailPrice": "9.99"},
            ]})

        fake_api.add(f"{CHEAPSHARK_BASE_URL}/games", games)

        result = await sync_service.search_and_sync_cheapshark("portal")

        assert result["title"] == "portal"
        assert result["items_processed"] == 2
        assert result["items_added"] == 2
        assert (await sync_service.sink.get("cheapshark_games", "612")).title == "Portal"
