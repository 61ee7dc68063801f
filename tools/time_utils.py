"""Reference-timezone helpers. All persisted datetimes are aware UTC."""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialize to a fixed-width UTC ISO string so that SQL string order == time order."""
    if dt is None:
        return None
    return ensure_aware(dt).astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return ensure_aware(datetime.fromisoformat(value))


def reference_date(now: datetime, tz: ZoneInfo) -> date:
    """Calendar date of ``now`` in the reference timezone."""
    return ensure_aware(now).astimezone(tz).date()


def local_datetime(day: date, hour: int, tz: ZoneInfo) -> datetime:
    """``day`` at ``hour``:00 in the reference timezone; hour 24 rolls to the next day."""
    if hour == 24:
        return datetime.combine(day + timedelta(days=1), time(0), tzinfo=tz)
    return datetime.combine(day, time(hour), tzinfo=tz)


def day_bounds_utc(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """[start, end) of a reference-timezone calendar day, as UTC datetimes."""
    start = local_datetime(day, 0, tz)
    end = local_datetime(day + timedelta(days=1), 0, tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
