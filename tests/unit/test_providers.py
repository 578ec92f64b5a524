"""Tests for provider adapters, configs and cooldown policies."""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from ingest.backfill.windows import DateWindow
from ingest.errors import ErrorKind, ProviderError
from ingest.models.queue import QueueItem
from ingest.providers.base import FixedCooldown, ProviderConfig, ProviderKind, VolumeCooldown
from ingest.providers.coros import workouts_to_queue_items
from ingest.providers.garmin import GarminAdapter
from ingest.providers.registry import build_provider_configs, get_adapter, parse_provider
from ingest.utils import DAY_MS

WINDOW = DateWindow(
    datetime(2023, 1, 1, tzinfo=timezone.utc),
    datetime(2023, 1, 31, tzinfo=timezone.utc),
)


@pytest.fixture(name="adapter_for")
def adapter_for_fixture(configs, make_http):
    def _make(kind: ProviderKind, routes=None):
        http, router = make_http(routes)
        return get_adapter(configs[kind], http), router

    return _make


# ─── Configs ──────────────────────────────────────────────────────────────────

class TestProviderConfigs:
    def test_safe_window_below_documented_maximum(self, configs):
        for config in configs.values():
            assert config.safe_window_days < config.max_window_days

    def test_window_sizes(self, configs):
        assert configs[ProviderKind.GARMIN].safe_window_days == 89
        assert configs[ProviderKind.SUUNTO].safe_window_days == 89
        assert configs[ProviderKind.COROS].safe_window_days == 29

    def test_safe_window_must_be_below_max(self):
        with pytest.raises(ValueError):
            ProviderConfig(
                kind=ProviderKind.GARMIN,
                token_collection="t",
                queue_collection="q",
                history_queue_collection="q",
                token_url="https://x",
                api_base_url="https://x",
                max_window_days=90,
                safe_window_days=90,
                cooldown=FixedCooldown(14),
            )

    def test_only_garmin_requires_history_permission(self, configs):
        assert configs[ProviderKind.GARMIN].required_backfill_permissions == ("HISTORICAL_DATA_EXPORT",)
        assert configs[ProviderKind.SUUNTO].required_backfill_permissions == ()

    def test_coros_staging_switch(self, settings):
        staging = build_provider_configs(settings.model_copy(update={"coros_use_staging": True}))
        assert staging[ProviderKind.COROS].api_base_url == "https://opentest.coros.com"

    def test_parse_provider(self):
        assert parse_provider("Garmin") == ProviderKind.GARMIN
        with pytest.raises(ValueError):
            parse_provider("polar")


class TestCooldowns:
    def test_fixed(self):
        assert FixedCooldown(14).next_available(1000, 0) == 1000 + 14 * DAY_MS

    def test_volume_scales_with_count(self):
        assert VolumeCooldown(500).next_available(0, 1000) == 2 * DAY_MS

    def test_volume_zero_never_blocks(self):
        assert VolumeCooldown(500).next_available(0, 0) is None


# ─── Garmin ───────────────────────────────────────────────────────────────────

class TestGarminAdapter:
    @pytest.mark.asyncio
    async def test_backfill_sends_window_in_seconds_and_enqueues_nothing(self, adapter_for, make_credential):
        adapter, router = adapter_for(ProviderKind.GARMIN, {
            ("GET", "/wellness-api/rest/backfill/activities"): httpx.Response(202),
        })
        cred = make_credential(provider=ProviderKind.GARMIN, access_token="g-token")

        items = await adapter.request_backfill(cred, WINDOW)

        assert items == []
        params = router.calls[0].url.params
        assert params["summaryStartTimeInSeconds"] == str(WINDOW.start_seconds)
        assert params["summaryEndTimeInSeconds"] == str(WINDOW.end_seconds)
        assert router.calls[0].headers["authorization"] == "Bearer g-token"

    @pytest.mark.asyncio
    async def test_backfill_conflict_raises_conflict(self, adapter_for, make_credential):
        adapter, _ = adapter_for(ProviderKind.GARMIN, {
            ("GET", "/wellness-api/rest/backfill/activities"): httpx.Response(
                409, json={"errorMessage": "Duplicate backfill detected"}
            ),
        })
        with pytest.raises(ProviderError) as exc_info:
            await adapter.request_backfill(make_credential(provider=ProviderKind.GARMIN), WINDOW)
        assert exc_info.value.kind == ErrorKind.CONFLICT

    @pytest.mark.asyncio
    async def test_permissions_retried_then_empty(self, adapter_for):
        adapter, router = adapter_for(ProviderKind.GARMIN, {
            ("GET", "/wellness-api/rest/user/permissions"): httpx.Response(503, text="busy"),
        })
        with patch.object(GarminAdapter._get_permissions.retry, "sleep", new=AsyncMock()) as sleep:
            assert await adapter.fetch_permissions("tok") == []

        assert len(router.calls) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_permissions_success_after_retry(self, adapter_for):
        answers = iter([httpx.Response(500), httpx.Response(200, json=["HISTORICAL_DATA_EXPORT"])])
        adapter, _ = adapter_for(ProviderKind.GARMIN, {
            ("GET", "/wellness-api/rest/user/permissions"): lambda req: next(answers),
        })
        with patch.object(GarminAdapter._get_permissions.retry, "sleep", new=AsyncMock()):
            assert await adapter.fetch_permissions("tok") == ["HISTORICAL_DATA_EXPORT"]

    @pytest.mark.asyncio
    async def test_fetch_activity_uses_file_endpoint(self, adapter_for):
        adapter, router = adapter_for(ProviderKind.GARMIN, {
            ("GET", "/wellness-api/rest/activityFile"): httpx.Response(200, content=b"FIT"),
        })
        item = QueueItem.new("q", ProviderKind.GARMIN, "g-1", "file-77")

        assert await adapter.fetch_activity("tok", item) == b"FIT"
        assert router.calls[0].url.params["id"] == "file-77"

    @pytest.mark.asyncio
    async def test_resolve_user_id(self, adapter_for):
        adapter, _ = adapter_for(ProviderKind.GARMIN, {
            ("GET", "/wellness-api/rest/user/id"): httpx.Response(200, json={"userId": "g-1"}),
        })
        assert await adapter.resolve_user_id({"access_token": "tok"}) == "g-1"

    @pytest.mark.asyncio
    async def test_deauthorize_deletes_registration(self, adapter_for):
        adapter, router = adapter_for(ProviderKind.GARMIN, {
            ("DELETE", "/wellness-api/rest/user/registration"): httpx.Response(204),
        })
        await adapter.deauthorize("tok")
        assert len(router.calls) == 1


# ─── Suunto ───────────────────────────────────────────────────────────────────

class TestSuuntoAdapter:
    @pytest.mark.asyncio
    async def test_backfill_lists_workouts_into_history_queue(self, adapter_for, make_credential, configs):
        adapter, router = adapter_for(ProviderKind.SUUNTO, {
            ("GET", "/v2/workouts"): httpx.Response(200, json={
                "error": None,
                "payload": [{"workoutKey": "w1"}, {"workoutKey": "w2"}, {"other": 1}],
            }),
        })
        cred = make_credential(external_id="bob", access_token="s-token")

        items = await adapter.request_backfill(cred, WINDOW)

        assert [i.workout_id for i in items] == ["w1", "w2"]
        assert all(i.collection == configs[ProviderKind.SUUNTO].history_queue_collection for i in items)
        assert all(i.external_user_id == "bob" for i in items)
        request = router.calls[0]
        assert request.url.params["since"] == str(WINDOW.start_ms)
        assert request.url.params["until"] == str(WINDOW.end_ms)
        assert request.headers["authorization"] == "s-token"
        assert request.headers["ocp-apim-subscription-key"] == "suunto-key"

    @pytest.mark.asyncio
    async def test_backfill_error_payload_raises(self, adapter_for, make_credential):
        adapter, _ = adapter_for(ProviderKind.SUUNTO, {
            ("GET", "/v2/workouts"): httpx.Response(200, json={"error": "Quota exceeded"}),
        })
        with pytest.raises(ProviderError) as exc_info:
            await adapter.request_backfill(make_credential(), WINDOW)
        assert exc_info.value.provider_message == "Quota exceeded"

    @pytest.mark.asyncio
    async def test_fetch_activity_exports_fit(self, adapter_for):
        adapter, router = adapter_for(ProviderKind.SUUNTO, {
            ("GET", "/v2/workout/exportFit/w1"): httpx.Response(200, content=b"FIT"),
        })
        item = QueueItem.new("q", ProviderKind.SUUNTO, "bob", "w1")
        assert await adapter.fetch_activity("s-token", item) == b"FIT"

    @pytest.mark.asyncio
    async def test_resolve_user_id_from_token_response(self, adapter_for):
        adapter, router = adapter_for(ProviderKind.SUUNTO)
        assert await adapter.resolve_user_id({"user": "bob"}) == "bob"
        assert router.calls == []
        with pytest.raises(ProviderError):
            await adapter.resolve_user_id({})


# ─── COROS ────────────────────────────────────────────────────────────────────

class TestCorosWorkoutConversion:
    def test_regular_workouts(self):
        items = workouts_to_queue_items([
            {"openId": "u1", "labelId": "w1", "fitUrl": "https://coros/1.fit"},
            {"openId": "u1", "labelId": "w2", "fitUrl": "https://coros/2.fit"},
        ], "q")
        assert [i.workout_id for i in items] == ["w1", "w2"]
        assert items[0].file_url == "https://coros/1.fit"

    def test_open_id_override(self):
        items = workouts_to_queue_items(
            [{"openId": "original", "labelId": "w1", "fitUrl": "https://coros/1.fit"}], "q", "override"
        )
        assert items[0].external_user_id == "override"

    def test_triathlon_expanded_per_leg(self):
        items = workouts_to_queue_items([{
            "openId": "u1",
            "labelId": "tri",
            "triathlonItemList": [
                {"fitUrl": "https://coros/swim.fit"},
                {"fitUrl": "https://coros/bike.fit"},
                {"fitUrl": "https://coros/run.fit"},
            ],
        }], "q")
        assert [i.file_url for i in items] == [
            "https://coros/swim.fit", "https://coros/bike.fit", "https://coros/run.fit",
        ]
        assert len({i.id for i in items}) == 3

    def test_missing_fit_url_dropped(self):
        items = workouts_to_queue_items([
            {"openId": "u1", "labelId": "w1", "fitUrl": "https://coros/1.fit"},
            {"openId": "u1", "labelId": "w2"},
            {"openId": "u1", "labelId": "w3", "fitUrl": ""},
        ], "q")
        assert [i.workout_id for i in items] == ["w1"]


class TestCorosAdapter:
    @pytest.mark.asyncio
    async def test_backfill_uses_compact_dates_and_query_token(self, adapter_for, make_credential):
        adapter, router = adapter_for(ProviderKind.COROS, {
            ("GET", "/v2/coros/sport/list"): httpx.Response(200, json={
                "message": "OK",
                "data": [{"openId": "open-1", "labelId": "w1", "fitUrl": "https://coros/1.fit"}],
            }),
        })
        cred = make_credential(provider=ProviderKind.COROS, external_id="open-1", access_token="c-token")

        items = await adapter.request_backfill(cred, WINDOW)

        assert len(items) == 1
        params = router.calls[0].url.params
        assert params["startDate"] == "20230101"
        assert params["endDate"] == "20230131"
        assert params["token"] == "c-token"
        assert params["openId"] == "open-1"

    @pytest.mark.asyncio
    async def test_backfill_non_ok_message_raises(self, adapter_for, make_credential):
        adapter, _ = adapter_for(ProviderKind.COROS, {
            ("GET", "/v2/coros/sport/list"): httpx.Response(200, json={"message": "Fail", "result": "1019"}),
        })
        cred = make_credential(provider=ProviderKind.COROS, external_id="open-1")
        with pytest.raises(ProviderError, match="1019"):
            await adapter.request_backfill(cred, WINDOW)

    @pytest.mark.asyncio
    async def test_fetch_activity_downloads_fit_url(self, adapter_for):
        adapter, router = adapter_for(ProviderKind.COROS, {
            ("GET", "/files/1.fit"): httpx.Response(200, content=b"FIT"),
        })
        item = QueueItem.new("q", ProviderKind.COROS, "open-1", "w1", file_url="https://cdn.coros.test/files/1.fit")
        assert await adapter.fetch_activity("c-token", item) == b"FIT"

    @pytest.mark.asyncio
    async def test_deauthorize_posts_token(self, adapter_for):
        adapter, router = adapter_for(ProviderKind.COROS, {
            ("POST", "/oauth2/deauthorize"): httpx.Response(200, json={"message": "OK"}),
        })
        await adapter.deauthorize("c-token")
        assert router.calls[0].url.params["token"] == "c-token"
