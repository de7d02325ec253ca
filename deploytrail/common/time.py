"""Common time utilities."""

from __future__ import annotations

import datetime as dt


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp suitable for DB defaults."""
    return dt.datetime.now(dt.UTC)


def to_epoch_millis(value: dt.datetime) -> int:
    """Convert an aware datetime into integer epoch milliseconds."""
    if value.tzinfo is None:
        msg = "value must be timezone-aware"
        raise ValueError(msg)
    return int(value.timestamp() * 1000)
