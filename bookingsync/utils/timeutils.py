"""Datetime helpers shared by the booking flows"""

from datetime import datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and normalize aware ones"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp (``Z`` suffix accepted); returns None when unparseable"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return ensure_utc(parsed)


def format_for_hapio(value: datetime, tz_name: Optional[str] = None) -> str:
    """
    Format a datetime the way Hapio expects: Y-m-d\\TH:i:sP

    No microseconds, explicit offset. The wall time is rendered in ``tz_name``
    when it is a known zone, UTC otherwise.
    """
    value = ensure_utc(value)
    zone = timezone.utc
    if tz_name:
        try:
            zone = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            zone = timezone.utc
    return value.astimezone(zone).replace(microsecond=0).isoformat()


def hours_until(target: datetime, now: Optional[datetime] = None) -> float:
    now = now or utcnow()
    return (ensure_utc(target) - ensure_utc(now)).total_seconds() / 3600
