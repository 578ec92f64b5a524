"""
Binds each ProviderKind to its configuration record and adapter class.

build_provider_configs() is the only place that turns Settings into
provider configuration; components receive the resulting frozen records.
"""
from typing import Dict, Optional, Type

from ingest.config import Settings
from ingest.http import HttpClient
from ingest.providers import coros, garmin, suunto
from ingest.providers.base import (
    FixedCooldown,
    ProviderAdapter,
    ProviderConfig,
    ProviderKind,
    VolumeCooldown,
)
from ingest.utils import DAY_MS

ADAPTERS: Dict[ProviderKind, Type[ProviderAdapter]] = {
    ProviderKind.GARMIN: garmin.GarminAdapter,
    ProviderKind.SUUNTO: suunto.SuuntoAdapter,
    ProviderKind.COROS: coros.CorosAdapter,
}


def build_provider_configs(settings: Settings) -> Dict[ProviderKind, ProviderConfig]:
    coros_base = coros.base_url(settings.coros_use_staging)
    volume = VolumeCooldown(items_per_day=settings.history_items_per_cooldown_day)
    return {
        ProviderKind.GARMIN: ProviderConfig(
            kind=ProviderKind.GARMIN,
            token_collection="garminHealthAPITokens",
            queue_collection="garminHealthAPIActivityQueue",
            # Backfilled history is pushed into the live queue.
            history_queue_collection="garminHealthAPIActivityQueue",
            token_url=garmin.TOKEN_URL,
            api_base_url=garmin.API_BASE_URL,
            max_window_days=90,
            safe_window_days=89,
            cooldown=FixedCooldown(days=settings.garmin_backfill_cooldown_days),
            client_id=settings.garmin_client_id,
            client_secret=settings.garmin_client_secret,
            scopes=garmin.SCOPES,
            required_backfill_permissions=(garmin.HISTORY_PERMISSION,),
            timeout_seconds=settings.http_timeout_seconds,
        ),
        ProviderKind.SUUNTO: ProviderConfig(
            kind=ProviderKind.SUUNTO,
            token_collection="suuntoAppAccessTokens",
            queue_collection="suuntoAppWorkoutQueue",
            history_queue_collection="suuntoAppHistoryImportWorkoutQueue",
            token_url=suunto.TOKEN_URL,
            api_base_url=suunto.API_BASE_URL,
            max_window_days=90,
            safe_window_days=89,
            cooldown=volume,
            client_id=settings.suunto_client_id,
            client_secret=settings.suunto_client_secret,
            scopes=suunto.SCOPES,
            subscription_key=settings.suunto_subscription_key,
            timeout_seconds=settings.http_timeout_seconds,
        ),
        ProviderKind.COROS: ProviderConfig(
            kind=ProviderKind.COROS,
            token_collection="COROSAPIAccessTokens",
            queue_collection="COROSAPIWorkoutQueue",
            history_queue_collection="COROSAPIHistoryImportWorkoutQueue",
            token_url=f"{coros_base}/oauth2/accesstoken",
            api_base_url=coros_base,
            max_window_days=30,
            safe_window_days=29,
            cooldown=volume,
            client_id=settings.coros_client_id,
            client_secret=settings.coros_client_secret,
            token_lifetime_ms=coros.TOKEN_LIFETIME_DAYS * DAY_MS,
            history_limit_months=settings.coros_history_limit_months,
            timeout_seconds=settings.http_timeout_seconds,
        ),
    }


def get_adapter(config: ProviderConfig, http: Optional[HttpClient] = None) -> ProviderAdapter:
    """Instantiate the adapter for a config, with an HttpClient stamped for that provider."""
    http = http or HttpClient()
    return ADAPTERS[config.kind](
        config, http.with_provider(config.kind.value, timeout=config.timeout_seconds)
    )


def parse_provider(name: str) -> ProviderKind:
    """
    Raises:
        ValueError: for a name outside the known provider set.
    """
    try:
        return ProviderKind(name.lower())
    except ValueError:
        known = ", ".join(k.value for k in ProviderKind)
        raise ValueError(f"Unknown provider {name!r} (expected one of: {known})") from None
