"""
FIT payload parser: turns a downloaded .fit file into a workout summary dict.

Summary fields and where they come from:
  FIT message / field            → our field
  session.sport                  → sport
  session.start_time             → start_time (falls back to first record)
  session.total_elapsed_time     → duration_seconds (falls back to record span)
  session.total_distance         → distance_meters (falls back to last record)
  record.heart_rate              → avg_heart_rate, max_heart_rate
  record count                   → record_count
"""
import io
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import fitparse


class FitParseError(Exception):
    """Raised when a FIT payload cannot be parsed."""


def _utc_ms(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def parse_fit_bytes(payload: bytes) -> Dict[str, Any]:
    """
    Parse a FIT payload into a summary.

    Args:
        payload: Raw .fit file content as downloaded from the provider.

    Returns:
        Dict with keys sport, start_time (epoch ms), duration_seconds,
        distance_meters, avg_heart_rate, max_heart_rate, record_count.

    Raises:
        FitParseError: if the payload is empty, malformed, or holds neither
            a session nor any timestamped record.
    """
    if not payload:
        raise FitParseError("Empty FIT payload")

    try:
        fit = fitparse.FitFile(io.BytesIO(payload))
        sessions = [m.get_values() for m in fit.get_messages("session")]
        records = [m.get_values() for m in fit.get_messages("record")]
    except Exception as exc:
        raise FitParseError(f"Failed to parse FIT payload: {exc}") from exc

    records = [r for r in records if r.get("timestamp") is not None]
    if not sessions and not records:
        raise FitParseError("No session or record messages found in FIT payload")

    session = sessions[0] if sessions else {}

    start_time = session.get("start_time") or (records[0]["timestamp"] if records else None)

    duration: Optional[float] = session.get("total_elapsed_time")
    if duration is None and len(records) > 1:
        duration = (records[-1]["timestamp"] - records[0]["timestamp"]).total_seconds()

    distance: Optional[float] = session.get("total_distance")
    if distance is None:
        distances = [r["distance"] for r in records if r.get("distance") is not None]
        distance = distances[-1] if distances else None

    heart_rates: List[int] = [int(r["heart_rate"]) for r in records if r.get("heart_rate") is not None]

    sport = session.get("sport")
    return {
        "sport": str(sport) if sport is not None else None,
        "start_time": _utc_ms(start_time),
        "duration_seconds": float(duration) if duration is not None else None,
        "distance_meters": float(distance) if distance is not None else None,
        "avg_heart_rate": round(sum(heart_rates) / len(heart_rates)) if heart_rates else None,
        "max_heart_rate": max(heart_rates) if heart_rates else None,
        "record_count": len(records),
    }
