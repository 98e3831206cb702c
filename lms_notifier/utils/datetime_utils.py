from datetime import date, datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser


def naive_utc_now() -> datetime:
    """
    Get current UTC datetime as a naive datetime (no timezone info).
    Every instant in the store is kept in this form.

    Returns:
        datetime: Current UTC datetime without timezone info
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to naive UTC (no timezone info).

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: Naive UTC datetime
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def from_naive_utc(dt: datetime, zone: ZoneInfo = ZoneInfo("UTC")) -> datetime:
    """
    Convert a naive UTC datetime (no timezone info) to a timezone-aware datetime.

    Args:
        dt: Naive UTC datetime to convert
        zone: Timezone to use for the conversion (default: UTC)

    Returns:
        datetime: Timezone-aware datetime
    """
    if dt.tzinfo is not None:
        raise ValueError("Input datetime must be naive (no timezone info)")
    return dt.replace(tzinfo=timezone.utc).astimezone(zone)


def parse_instant(value: Union[str, datetime, date, None]) -> Optional[datetime]:
    """
    Parse a source date value into a naive UTC datetime.

    Accepts datetimes, dates (midnight UTC) and free-form strings understood by
    dateutil. Returns None for empty input; raises ValueError when a non-empty
    string cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    if not text:
        return None
    try:
        parsed = date_parser.parse(text)
    except (date_parser.ParserError, OverflowError) as e:
        raise ValueError(f"Unrecognised date: {text}") from e
    return to_naive_utc(parsed)


def days_until(target: datetime, now: datetime, zone: ZoneInfo = ZoneInfo("UTC")) -> int:
    """Whole calendar days from `now` to `target`, both naive UTC, counted in `zone`."""
    target_day = from_naive_utc(target, zone).date()
    today = from_naive_utc(now, zone).date()
    return (target_day - today).days


def format_long_date(dt: datetime, zone: ZoneInfo = ZoneInfo("UTC")) -> str:
    """Render a naive UTC instant as e.g. 'Wednesday, December 10, 2025'."""
    local = from_naive_utc(dt, zone)
    return f"{local.strftime('%A, %B')} {local.day}, {local.year}"
