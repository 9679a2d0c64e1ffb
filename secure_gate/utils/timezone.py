"""
secure_gate/utils/timezone.py - UTC clock helpers and local display time
All ledger and token arithmetic runs on aware UTC datetimes; the local
timezone is only used for the human-readable notification timestamp.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

import pytz

from secure_gate.config import get_settings

UTC = pytz.utc

EPOCH_MS_MAX_DIGITS = 15

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones."""
    if dt.tzinfo is None:
        return UTC.localize(dt)
    return dt.astimezone(UTC)


def to_epoch_ms(dt: datetime) -> int:
    return int(ensure_utc(dt).timestamp() * 1000)


def from_epoch_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


def parse_epoch_ms(value: str) -> Optional[datetime]:
    """
    Parse a stored or transmitted epoch-ms stamp.
    Only 1-15 ASCII digits naming a representable instant are accepted;
    anything else (Unicode digits, huge numbers) reads as None.
    """
    if not value or len(value) > EPOCH_MS_MAX_DIGITS:
        return None
    if not (value.isascii() and value.isdigit()):
        return None
    try:
        return from_epoch_ms(int(value))
    except (OverflowError, ValueError, OSError):
        return None


def millis(delta: timedelta) -> int:
    return delta // timedelta(milliseconds=1)


def isoformat_z(dt: datetime) -> str:
    """ISO-8601 with millisecond precision and a trailing Z, like JS toISOString()."""
    return ensure_utc(dt).strftime("%Y-%m-%dT%H:%M:%S.") + f"{ensure_utc(dt).microsecond // 1000:03d}Z"


def parse_iso(value: str) -> datetime:
    """Parse ISO timestamps as returned by PostgREST or isoformat_z()."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def local_display_time(dt: datetime, tz_name: str | None = None) -> str:
    """Format a timestamp in the notification timezone, e.g. '2026-10-17 14:05:09'."""
    tz = pytz.timezone(tz_name or get_settings().notification_timezone)
    return ensure_utc(dt).astimezone(tz).strftime("%Y-%m-%d %H:%M:%S")


def format_remaining(ms: int) -> str:
    """Render remaining cooldown as M:SS, rounding seconds up."""
    total_seconds = -(-max(0, ms) // 1000)
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}:{seconds:02d}"
