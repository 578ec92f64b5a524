"""Tests for the backfill CLI.

Imports inside _backfill() are lazy, so get_engine and build_services are
patched at their source module paths.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ingest.backfill.orchestrator import BackfillResult
from ingest.errors import BackfillError, ErrorKind, FailureCode, ProviderError
from ingest.providers.base import ProviderKind
from ingest.scripts.backfill import _backfill


def _services(result=None, error=None):
    services = MagicMock()
    services.orchestrator.backfill = AsyncMock(return_value=result, side_effect=error)
    return services


def _patches(services):
    return [
        patch("ingest.db.engine.get_engine", return_value=MagicMock()),
        patch("ingest.services.build_services", return_value=services),
    ]


class TestBackfillScript:
    @pytest.mark.asyncio
    async def test_success_returns_zero(self):
        services = _services(result=BackfillResult(windows=2, enqueued=5))
        p1, p2 = _patches(services)
        with p1, p2:
            code = await _backfill("Garmin", "user-1", "2023-01-01", "2023-04-10")

        assert code == 0
        services.orchestrator.backfill.assert_awaited_once_with(
            "user-1",
            ProviderKind.GARMIN,
            datetime(2023, 1, 1, tzinfo=timezone.utc),
            datetime(2023, 4, 10, tzinfo=timezone.utc),
        )

    @pytest.mark.asyncio
    async def test_rejected_import_returns_one(self):
        services = _services(error=BackfillError(FailureCode.COOLDOWN_ACTIVE, "on cooldown"))
        p1, p2 = _patches(services)
        with p1, p2:
            assert await _backfill("suunto", "user-1", "2023-01-01", "2023-02-01") == 1

    @pytest.mark.asyncio
    async def test_provider_failure_returns_one(self):
        services = _services(error=ProviderError(ErrorKind.FORBIDDEN, "HTTP 403", http_status=403))
        p1, p2 = _patches(services)
        with p1, p2:
            assert await _backfill("suunto", "user-1", "2023-01-01", "2023-02-01") == 1

    @pytest.mark.asyncio
    async def test_unknown_provider_returns_two(self):
        services = _services()
        p1, p2 = _patches(services)
        with p1, p2:
            assert await _backfill("polar", "user-1", "2023-01-01", "2023-02-01") == 2
        services.orchestrator.backfill.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bad_date_returns_two(self):
        p1, p2 = _patches(_services())
        with p1, p2:
            assert await _backfill("garmin", "user-1", "last tuesday", "2023-02-01") == 2


class TestBackfillMain:
    """Tests for the CLI entrypoint."""

    def test_main_runs_and_exits_with_code(self):
        captured = {}

        def capture_and_close(coro):
            captured["coro"] = coro
            coro.close()  # prevent RuntimeWarning about unawaited coroutine
            return 0

        with patch("ingest.scripts.backfill.asyncio.run", side_effect=capture_and_close), \
             patch("sys.argv", ["backfill", "--provider", "garmin", "--user", "u",
                                "--start", "2023-01-01", "--end", "2023-02-01"]):
            from ingest.scripts.backfill import main
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert "coro" in captured
        assert exc_info.value.code == 0

    def test_missing_arguments_exit(self):
        with patch("sys.argv", ["backfill", "--provider", "garmin"]):
            from ingest.scripts.backfill import main
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 2
