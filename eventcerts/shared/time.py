from __future__ import annotations

from datetime import date, datetime, timezone


def now_utc() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def now_utc_naive() -> datetime:
    """UTC now without tzinfo, for naive DateTime columns."""
    return now_utc().replace(tzinfo=None)


def epoch_ms() -> int:
    return int(now_utc().timestamp() * 1000)


def parse_iso_date(value: str | None) -> date | None:
    """Parse ``YYYY-MM-DD`` (optionally with a time part); None when invalid."""
    if not value:
        return None
    raw = value.strip()
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None
