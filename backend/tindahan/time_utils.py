from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from flask import current_app


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def store_timezone() -> ZoneInfo:
    """Timezone of the store's business day (STORE_TIMEZONE)."""
    return ZoneInfo(current_app.config["STORE_TIMEZONE"])


def local_date(dt: datetime, tz: Optional[ZoneInfo] = None) -> date:
    """Calendar date in the store's timezone of a UTC-naive datetime."""
    tz = tz or store_timezone()
    return dt.replace(tzinfo=timezone.utc).astimezone(tz).date()


def local_day_start(d: date, tz: Optional[ZoneInfo] = None) -> datetime:
    """UTC-naive instant at which calendar day d begins in the store's timezone."""
    tz = tz or store_timezone()
    return datetime.combine(d, time.min, tzinfo=tz).astimezone(timezone.utc).replace(tzinfo=None)


def today() -> date:
    """Today's date at the store."""
    return local_date(utcnow())


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD HH:MM:SS" and "YYYY-MM-DDTHH:MM" (naive) are interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_date(value) -> Optional[date]:
    """
    Parse an expiration date.

    Accepts date objects, "YYYY-MM-DD", or a full ISO datetime (date part kept).
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    if len(s) == 10:
        return date.fromisoformat(s)
    return parse_iso_datetime(s).date()


def parse_range_bound(value: Optional[str], *, end: bool = False) -> Optional[datetime]:
    """
    Parse a report range bound as a UTC-naive datetime.

    Ranges are half-open (start <= t < end). A bare date is a calendar day in
    the store's timezone: it expands to that day's midnight, or to the next
    midnight when used as the end of a range so the whole day is covered.
    Full datetimes are used as given.
    """
    if value is None or not value.strip():
        return None
    s = value.strip()
    if len(s) == 10:
        d = date.fromisoformat(s)
        try:
            if end:
                d += timedelta(days=1)
            return local_day_start(d)
        except OverflowError:
            raise ValueError(f"date out of range: {s}")
    return parse_iso_datetime(s)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
