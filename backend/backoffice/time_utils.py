from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

# All timestamps are stored as naive datetimes meaning UTC.


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_datetime(value: datetime) -> datetime:
    """Aware -> converted to UTC and made naive. Naive is taken as UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    ISO-8601 text (API input) -> UTC-naive datetime.

    Blank input gives None. A trailing "Z" or an explicit offset is honoured;
    text without an offset is read as UTC. Raises ValueError on bad text.
    """
    if value is None or not value.strip():
        return None

    text = value.strip()
    if text[-1] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    return normalize_datetime(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """datetime -> "YYYY-MM-DDTHH:MM:SSZ" (seconds precision)."""
    if dt is None:
        return None
    return normalize_datetime(dt).replace(microsecond=0).isoformat() + "Z"
