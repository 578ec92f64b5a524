"""Small shared helpers: epoch-millis clock, deterministic ids, date formatting."""
import hashlib
import time
from datetime import datetime, timezone
from typing import Iterable

DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """Current time as integer epoch milliseconds (the unit every stored timestamp uses)."""
    return int(time.time() * 1000)


def generate_id_from_parts(parts: Iterable[str]) -> str:
    """
    Build a deterministic document id from its identifying parts.

    Parts may contain characters that are illegal in a document path
    (COROS FIT URLs contain '/'), so the joined string is hashed.
    """
    joined = "-".join(str(p) for p in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def ms_to_datetime(value_ms: int) -> datetime:
    return datetime.fromtimestamp(value_ms / 1000, tz=timezone.utc)


def datetime_to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def format_ms(value_ms: int) -> str:
    """ISO-8601 UTC rendering of an epoch-millis timestamp, for messages and logs."""
    return ms_to_datetime(value_ms).strftime("%Y-%m-%dT%H:%M:%SZ")
