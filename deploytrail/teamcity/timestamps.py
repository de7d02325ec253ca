"""Parsing for TeamCity's compact ``yyyyMMdd'T'HHmmss±HHMM`` timestamps."""

from __future__ import annotations

import datetime as dt
import re

from deploytrail.common.time import to_epoch_millis

from .errors import BuildTimestampError

_LOCAL_WIDTH = 15
_LOCAL_FORMAT = "%Y%m%dT%H%M%S"
_LOCAL_PATTERN = re.compile(r"^\d{8}T\d{6}$")
_OFFSET_PATTERN = re.compile(r"^(?P<sign>[+-])(?P<hours>\d{2})(?P<minutes>\d{2})$")


def _split_offset(raw: str) -> tuple[str, str]:
    """Split a compact timestamp into its local part and ``±HH:MM`` offset."""
    local, offset = raw[:_LOCAL_WIDTH], raw[_LOCAL_WIDTH:]
    match = _OFFSET_PATTERN.match(offset)
    if match is None or _LOCAL_PATTERN.match(local) is None:
        raise BuildTimestampError.malformed(raw)
    return local, f"{match['sign']}{match['hours']}:{match['minutes']}"


def parse_teamcity_datetime(raw: object) -> dt.datetime:
    """Parse a TeamCity compact timestamp into an aware UTC datetime.

    >>> parse_teamcity_datetime("20240115T093000+0100").isoformat()
    '2024-01-15T08:30:00+00:00'
    """
    if not isinstance(raw, str):
        raise BuildTimestampError.malformed(raw)
    text = raw.strip()
    local, offset = _split_offset(text)
    try:
        local_time = dt.datetime.strptime(local, _LOCAL_FORMAT)  # noqa: DTZ007
        parsed = dt.datetime.fromisoformat(f"{local_time.isoformat()}{offset}")
    except ValueError as exc:
        raise BuildTimestampError.malformed(raw) from exc
    return parsed.astimezone(dt.UTC)


def parse_teamcity_timestamp(raw: object) -> int:
    """Parse a TeamCity compact timestamp into epoch milliseconds.

    Precision is whole seconds, matching the source format.
    """
    return to_epoch_millis(parse_teamcity_datetime(raw))
