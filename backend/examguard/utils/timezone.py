"""
Time helpers.

Datetimes are stored naive in UTC; conversion to the configured display
timezone happens only when formatting for responses and headers.
"""
from datetime import datetime
import pytz
from typing import Optional

from ..core.config import settings


def get_local_tz():
    return pytz.timezone(settings.default_timezone)


def utc_now() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(pytz.UTC).replace(tzinfo=None)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware datetime to naive UTC; naive input is assumed UTC already."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(pytz.UTC).replace(tzinfo=None)


def utc_to_local(utc_dt: datetime) -> datetime:
    if utc_dt.tzinfo is None:
        utc_dt = utc_dt.replace(tzinfo=pytz.UTC)
    return utc_dt.astimezone(get_local_tz())


def format_local_time(dt: datetime, format_str: Optional[str] = None) -> str:
    return utc_to_local(dt).strftime(format_str or settings.timezone_display_format)


def get_timezone_info() -> dict:
    now = utc_to_local(utc_now())
    return {
        "timezone": settings.default_timezone,
        "offset": now.strftime("%z"),
        "current_time": now.strftime(settings.timezone_display_format)
    }
