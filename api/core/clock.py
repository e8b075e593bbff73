"""Clock and calendar-day arithmetic.

All streak bookkeeping uses UTC calendar days. A "day" boundary is UTC
midnight; naive datetimes are interpreted as UTC.
"""

from datetime import UTC, date, datetime, timedelta

ONE_DAY = timedelta(days=1)


def utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def day_floor(value: datetime) -> datetime:
    """Truncate to midnight of the same UTC calendar day."""
    return ensure_utc(value).replace(hour=0, minute=0, second=0, microsecond=0)


def days_between(later: datetime, earlier: datetime) -> int:
    """Whole calendar days from ``earlier`` to ``later``.

    Time of day is ignored: 23:59 yesterday and 00:01 today are one day
    apart. Negative when ``earlier`` is actually in the future.
    """
    return (day_floor(later) - day_floor(earlier)) // ONE_DAY


def _from_seconds_mapping(value: dict) -> datetime | None:
    """Serialized store timestamp: {"_seconds": ..., "_nanoseconds": ...}."""
    seconds = value.get("_seconds", value.get("seconds"))
    nanoseconds = value.get("_nanoseconds", value.get("nanoseconds", 0))
    numbers = (seconds, nanoseconds)
    if any(isinstance(n, bool) or not isinstance(n, int | float) for n in numbers):
        return None
    try:
        return datetime.fromtimestamp(seconds, UTC) + timedelta(
            microseconds=nanoseconds / 1000
        )
    except (OverflowError, OSError, ValueError):
        return None


def to_datetime(value: object) -> datetime | None:
    """Normalize a persisted timestamp into an aware UTC datetime.

    Accepts datetimes, dates, ISO-8601 strings (including a trailing "Z"),
    serialized ``{"_seconds", "_nanoseconds"}`` mappings and store-native
    timestamp objects exposing ``to_datetime()``. Returns None when the
    value cannot be interpreted; callers decide whether to skip or reject it.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    if isinstance(value, dict):
        return _from_seconds_mapping(value)
    to_native = getattr(value, "to_datetime", None)
    if callable(to_native):
        converted = to_native()
        if isinstance(converted, datetime):
            return ensure_utc(converted)
    return None
