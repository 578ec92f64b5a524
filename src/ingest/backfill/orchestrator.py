"""
BackfillOrchestrator: bulk history import for one user and provider.

Flow:
  1. Validate the range (and clamp it to the provider's history limit)
  2. Enforce the provider's cooldown since the previous import
  3. Load the user's credential and make sure its token is valid
  4. Check the permissions the provider needs for history export
  5. Split the range into windows below the provider's maximum span
  6. Request each window in order:
     - conflict (a backfill already covers it) → abort, DUPLICATE_BACKFILL
     - range predates the earliest allowed start → skip, keep going
     - server error or timeout → abort, PROVIDER_ERROR with the window bounds
     - anything else → abort and propagate
     Pull providers return workouts which are enqueued in batches.
  7. Record lastImport and the enqueued count (best effort)

Windows run strictly one after another so that a fatal answer for window k
never lets window k+1 go out.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ingest.backfill.windows import DateWindow, split_windows
from ingest.credentials import CredentialStore
from ingest.db.store import DocumentStore
from ingest.errors import BackfillError, ErrorKind, FailureCode, ProviderError, TokenRefreshError
from ingest.models.backfill import BackfillJobState
from ingest.models.credential import Credential
from ingest.models.queue import QueueItem
from ingest.providers.base import ProviderAdapter, ProviderKind
from ingest.tokens import TokenManager
from ingest.utils import format_ms, ms_to_datetime, now_ms

logger = logging.getLogger(__name__)

ENQUEUE_BATCH_SIZE = 450

_PREDATES_MARKERS = ("min start time", "predates")


@dataclass
class BackfillResult:
    windows: int
    skipped_windows: int = 0
    enqueued: int = 0


def months_before(value: datetime, months: int) -> datetime:
    """Same day-of-month `months` earlier, clamped to the end of shorter months."""
    month_index = value.year * 12 + value.month - 1 - months
    year, month = divmod(month_index, 12)
    month += 1
    day = value.day
    while day > 28:
        try:
            return value.replace(year=year, month=month, day=day)
        except ValueError:
            day -= 1
    return value.replace(year=year, month=month, day=day)


def _predates_minimum(error: ProviderError) -> bool:
    if error.kind != ErrorKind.BAD_REQUEST:
        return False
    text = f"{error.provider_message or ''} {error}".lower()
    return any(marker in text for marker in _PREDATES_MARKERS)


def _window_details(window: DateWindow) -> Dict[str, str]:
    return {"windowStart": window.start.isoformat(), "windowEnd": window.end.isoformat()}


class BackfillOrchestrator:
    """
    Args:
        store: The document store (backfill state and history queues).
        credentials: CredentialStore adapter.
        tokens: TokenManager.
        adapters: One adapter per provider kind.
        timeout_seconds: Ceiling for one whole backfill call; None disables it.
        batch_size: Queue items written per batch.
        clock: Returns the current time in epoch millis.
    """

    def __init__(
        self,
        store: DocumentStore,
        credentials: CredentialStore,
        tokens: TokenManager,
        adapters: Dict[ProviderKind, ProviderAdapter],
        timeout_seconds: Optional[float] = None,
        batch_size: int = ENQUEUE_BATCH_SIZE,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.credentials = credentials
        self.tokens = tokens
        self.adapters = adapters
        self.timeout_seconds = timeout_seconds
        self.batch_size = batch_size
        self.clock = clock

    async def backfill(
        self, user_id: str, provider: ProviderKind, start: datetime, end: datetime
    ) -> BackfillResult:
        """
        Run one history import.

        Raises:
            BackfillError: with INVALID_RANGE, COOLDOWN_ACTIVE, NO_TOKEN_FOUND,
                TOKEN_REFRESH_FAILED, MISSING_PERMISSIONS, DUPLICATE_BACKFILL
                or PROVIDER_ERROR.
            ProviderError: for any other provider failure during a window.
        """
        if self.timeout_seconds is None:
            return await self._run(user_id, provider, start, end)
        try:
            return await asyncio.wait_for(
                self._run(user_id, provider, start, end), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            raise BackfillError(
                FailureCode.PROVIDER_ERROR,
                f"History import did not finish within {self.timeout_seconds:.0f}s",
                details={"userId": user_id, "provider": provider.value},
            ) from None

    async def _run(
        self, user_id: str, provider: ProviderKind, start: datetime, end: datetime
    ) -> BackfillResult:
        adapter = self.adapters[provider]
        config = adapter.config
        now = self.clock()

        start, end = self._validate_range(provider, start, end, now, config.history_limit_months)
        self._check_cooldown(user_id, provider, now)
        credential = await self._credential(user_id, provider)
        credential = await self._check_permissions(credential, adapter)

        windows = split_windows(start, end, config.safe_window_days)
        logger.info(
            "Backfilling %s for user %s from %s to %s in %d window(s)",
            provider.value, user_id, start.isoformat(), end.isoformat(), len(windows),
        )

        result = BackfillResult(windows=len(windows))
        for window in windows:
            try:
                items = await adapter.request_backfill(credential, window)
            except ProviderError as e:
                if e.kind == ErrorKind.CONFLICT:
                    raise BackfillError(
                        FailureCode.DUPLICATE_BACKFILL,
                        f"A history import for {window.describe()} was already requested",
                        details=_window_details(window),
                    ) from e
                if _predates_minimum(e):
                    logger.warning(
                        "Skipping %s window %s for user %s: %s",
                        provider.value, window.describe(), user_id, e.provider_message or e,
                    )
                    result.skipped_windows += 1
                    continue
                if e.kind in (ErrorKind.SERVER_ERROR, ErrorKind.TIMEOUT):
                    raise BackfillError(
                        FailureCode.PROVIDER_ERROR,
                        f"{provider.value} failed the history request for {window.describe()} ({e.code})",
                        details=_window_details(window),
                    ) from e
                raise

            if items:
                result.enqueued += self._enqueue(items, user_id)

        self._record_state(user_id, provider, result.enqueued)
        logger.info(
            "Backfill for user %s on %s done: %d window(s), %d skipped, %d item(s) enqueued",
            user_id, provider.value, result.windows, result.skipped_windows, result.enqueued,
        )
        return result

    # ─── Steps ────────────────────────────────────────────────────────────────

    def _validate_range(self, provider, start, end, now, history_limit_months):
        start = start if start.tzinfo else start.replace(tzinfo=timezone.utc)
        end = end if end.tzinfo else end.replace(tzinfo=timezone.utc)
        if start > end:
            raise BackfillError(
                FailureCode.INVALID_RANGE,
                "Start date must not be after end date",
                details={"startDate": start.isoformat(), "endDate": end.isoformat()},
            )

        if history_limit_months:
            cutoff = months_before(ms_to_datetime(now), history_limit_months)
            if end < cutoff:
                raise BackfillError(
                    FailureCode.INVALID_RANGE,
                    f"{provider.value} only provides the last {history_limit_months} months of history",
                    details={"earliestStartDate": cutoff.isoformat()},
                )
            if start < cutoff:
                logger.info("Clamping %s start date %s to %s", provider.value, start.isoformat(), cutoff.isoformat())
                start = cutoff
        return start, end

    def _check_cooldown(self, user_id: str, provider: ProviderKind, now: int) -> None:
        data = self.store.get(BackfillJobState.path_for(user_id, provider.value))
        if not data:
            return
        state = BackfillJobState.from_document(user_id, provider.value, data)
        if state.last_import is None:
            return
        cooldown = self.adapters[provider].config.cooldown
        next_available = cooldown.next_available(state.last_import, state.processed_activities_count)
        if next_available is not None and now < next_available:
            raise BackfillError(
                FailureCode.COOLDOWN_ACTIVE,
                f"History import is on cooldown until {format_ms(next_available)}",
                details={"nextAvailable": format_ms(next_available)},
            )

    async def _credential(self, user_id: str, provider: ProviderKind) -> Credential:
        stored = self.credentials.get(user_id, provider)
        if not stored:
            raise BackfillError(
                FailureCode.NO_TOKEN_FOUND,
                f"No {provider.value} connection found for this user",
                details={"provider": provider.value},
            )
        try:
            return await self.tokens.resolve_credential(stored[0])
        except TokenRefreshError as e:
            raise BackfillError(
                FailureCode.TOKEN_REFRESH_FAILED,
                f"Could not refresh the {provider.value} connection; please reconnect",
                details={"provider": provider.value},
            ) from e

    async def _check_permissions(self, credential: Credential, adapter: ProviderAdapter) -> Credential:
        required = adapter.config.required_backfill_permissions
        if not required:
            return credential

        if not credential.permissions:
            # Permissions may have been unknown at connect time; ask again.
            permissions = await adapter.fetch_permissions(credential.access_token)
            if permissions:
                changed_at = self.clock()
                self.credentials.update(credential, {
                    "permissions": permissions,
                    "permissionsLastChangedAt": changed_at,
                })
                credential = credential.model_copy(update={
                    "permissions": permissions,
                    "permissions_last_changed_at": changed_at,
                })

        missing = [p for p in required if p not in credential.permissions]
        if missing:
            raise BackfillError(
                FailureCode.MISSING_PERMISSIONS,
                f"Missing required permissions: {', '.join(missing)}",
                details={"missing": missing},
            )
        return credential

    def _enqueue(self, items: List[QueueItem], user_id: str) -> int:
        written = 0
        for offset in range(0, len(items), self.batch_size):
            chunk = items[offset:offset + self.batch_size]
            try:
                with self.store.batch() as batch:
                    for item in chunk:
                        batch.set(item.path, item.to_document())
            except SQLAlchemyError as exc:
                logger.error(
                    "Enqueue batch of %d item(s) for user %s failed: %s", len(chunk), user_id, exc
                )
                continue
            written += len(chunk)
        return written

    def _record_state(self, user_id: str, provider: ProviderKind, enqueued: int) -> None:
        state = BackfillJobState(
            user_id=user_id,
            provider=provider.value,
            last_import=self.clock(),
            processed_activities_count=enqueued,
        )
        try:
            self.store.set(state.path, state.to_document(), merge=True)
        except SQLAlchemyError as exc:
            logger.error("Could not record backfill state for user %s on %s: %s", user_id, provider.value, exc)


def parse_date(value: str) -> datetime:
    """Parse YYYY-MM-DD (or full ISO-8601) into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


