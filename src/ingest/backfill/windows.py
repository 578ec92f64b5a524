"""Split a backfill date range into provider-legal request windows."""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List

from ingest.utils import datetime_to_ms


@dataclass(frozen=True)
class DateWindow:
    start: datetime
    end: datetime

    @property
    def start_ms(self) -> int:
        return datetime_to_ms(self.start)

    @property
    def end_ms(self) -> int:
        return datetime_to_ms(self.end)

    @property
    def start_seconds(self) -> int:
        return self.start_ms // 1000

    @property
    def end_seconds(self) -> int:
        return self.end_ms // 1000

    def describe(self) -> str:
        return f"{self.start.isoformat()} to {self.end.isoformat()}"


def split_windows(start: datetime, end: datetime, max_days: int) -> List[DateWindow]:
    """
    Divide [start, end] into consecutive windows of at most `max_days`.

    The count is ceil(span / max_days) with a minimum of one, so a zero-length
    range still yields a single request. The last window always ends exactly
    at `end`.

    Args:
        start: Range start (naive values are treated as UTC).
        end: Range end; must not precede start.
        max_days: Window size in days. Pass the provider's safe size, which is
                  already below its documented maximum.

    Raises:
        ValueError: if end precedes start or max_days is not positive.
    """
    if max_days <= 0:
        raise ValueError("max_days must be positive")
    start, end = _utc(start), _utc(end)
    if end < start:
        raise ValueError("end precedes start")

    step = timedelta(days=max_days)
    count = max(1, math.ceil((end - start) / step))

    windows: List[DateWindow] = []
    for i in range(count):
        window_start = start + i * step
        window_end = min(window_start + step, end)
        windows.append(DateWindow(window_start, window_end))
    return windows


def _utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value
