from __future__ import annotations

import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime


def now_ms() -> int:
    return int(time.time() * 1000)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def iso_from_ms(value: int | float | None) -> str | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp_ms(value: object) -> int | None:
    """Normalize a record timestamp to epoch milliseconds.

    Accepts epoch milliseconds, epoch seconds (anything below 1e11 is taken as
    seconds), numeric strings and ISO-8601 strings. Returns None for anything
    else.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            try:
                dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return int(dt.timestamp() * 1000)
    else:
        return None
    if number < 1e11:
        number *= 1000
    return int(number)


def parse_http_date_ms(value: str | None) -> int | None:
    """Parse an RFC 1123 date such as a WebDAV getlastmodified value."""
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError):
        return parse_timestamp_ms(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)
