"""
dynorm Utilities

Conversions shared by the schema compiler and the entity classes:
- UTC normalisation of datetimes (naive datetimes are assumed to be UTC)
- datetime <-> epoch milliseconds, the record representation of dates
- ISO-8601 detection and reviving for JSON input
- JSON-able conversion of entity data for validation and serialization
"""

import json
import logging
import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

ISO_DATETIME_RE = re.compile(
    r'^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(\.\d*)?(Z|[+-]\d{2}(?::?\d{2})?)?$'
)


# =============================================================================
# Timezone Utilities
# =============================================================================

def to_utc(dt: datetime) -> datetime:
    """Convert datetime to UTC.

    Naive datetimes are assumed to already be in UTC.

    Examples:
        >>> to_utc(datetime(2024, 1, 1, 10, 0))  # -> 2024-01-01 10:00:00+00:00
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    """Current time in UTC, truncated to the millisecond precision of records."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


# =============================================================================
# Epoch Conversion
# =============================================================================

def to_epoch_millis(value: Any) -> int:
    """Convert a datetime (or date) to integer epoch milliseconds.

    Examples:
        >>> to_epoch_millis(datetime(1970, 1, 1, 0, 0, 1))  # -> 1000
    """
    if isinstance(value, datetime):
        dt = to_utc(value)
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    else:
        raise TypeError(f"Cannot convert {type(value).__name__} to epoch milliseconds")
    return (dt - EPOCH) // timedelta(milliseconds=1)


def from_epoch_millis(value: Any) -> datetime:
    """Convert epoch milliseconds (int, float or Decimal) to an aware UTC datetime.

    Fractional milliseconds are kept down to the microsecond.
    """
    millis = value if isinstance(value, Decimal) else Decimal(str(value))
    return EPOCH + timedelta(microseconds=int((millis * 1000).to_integral_value()))


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing ``Z`` and fractional seconds of any length.

    Raises:
        ValueError: If the string is not an ISO-8601 timestamp
    """
    text = value.replace('Z', '+00:00')
    match = re.match(r'^(.*T\d{2}:\d{2}:\d{2})\.(\d+)(.*)$', text)
    if match:
        head, fraction, tail = match.groups()
        text = f"{head}.{fraction[:6].ljust(6, '0')}{tail}"
    return to_utc(datetime.fromisoformat(text))


def coerce_datetime(value: Any) -> Optional[datetime]:
    """Coerce a record or default value into a datetime.

    Numbers are epoch milliseconds, strings are ISO-8601, datetimes pass through
    normalised to UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, bool):
        raise ValueError(f"Invalid datetime value: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        return from_epoch_millis(value)
    if isinstance(value, str):
        if value.lstrip('-').isdigit():
            return from_epoch_millis(int(value))
        return parse_iso_datetime(value)
    raise ValueError(f"Invalid datetime type: {type(value)}. Expected datetime, epoch or ISO string.")


# =============================================================================
# JSON Helpers
# =============================================================================

def is_iso_datetime(value: Any) -> bool:
    """Return True for strings shaped like ``YYYY-MM-DDTHH:mm:ss[.fff][Z|+HH:mm]``."""
    return isinstance(value, str) and ISO_DATETIME_RE.match(value) is not None


def revive_datetimes(obj: Any) -> Any:
    """Recursively replace ISO-8601 looking strings with datetimes."""
    if isinstance(obj, dict):
        return {k: revive_datetimes(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [revive_datetimes(item) for item in obj]
    elif is_iso_datetime(obj):
        try:
            return parse_iso_datetime(obj)
        except ValueError:
            return obj
    return obj


def loads_with_dates(text: str) -> Any:
    """json.loads that revives ISO-8601 strings into datetimes."""
    return revive_datetimes(json.loads(text))


def format_iso(dt: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string with millisecond precision."""
    return to_utc(dt).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def to_jsonable(obj: Any) -> Any:
    """Convert entity data into plain JSON types.

    - datetime -> ISO-8601 string
    - Decimal -> int when integral, float otherwise
    - set -> list
    - objects exposing to_json() (entities) -> their JSON form
    """
    if hasattr(obj, 'to_json') and callable(obj.to_json):
        return obj.to_json()
    if isinstance(obj, dict):
        return {k: to_jsonable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in obj]
    elif isinstance(obj, datetime):
        return format_iso(obj)
    elif isinstance(obj, date):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return int(obj) if obj == obj.to_integral_value() else float(obj)
    return obj


def dumps(obj: Any, **kwargs) -> str:
    """json.dumps for entity data."""
    return json.dumps(to_jsonable(obj), **kwargs)
