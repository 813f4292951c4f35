"""Time utilities for consistent timestamp handling."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def local_today(tz_name: str) -> date:
    """Return today's date in the given IANA timezone.

    Transactions are dated in the user's wall-clock day, not UTC: a 22h
    expense in Sao Paulo belongs to the same calendar day it was spent.
    """
    return datetime.now(ZoneInfo(tz_name)).date()


def from_epoch_seconds(value: str | int | None) -> datetime | None:
    """Parse a provider epoch timestamp ("1704067200") into aware UTC.

    Returns None for missing or malformed values.
    """
    if value is None or value == "":
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
