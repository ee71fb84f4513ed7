"""Wall-clock helpers. Scheduling data is stored in the business's local time."""
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from app.core.config import settings

DAY_END = time(23, 59)


def local_now(tz_name: str | None = None) -> datetime:
    """Naive local datetime for the organization's timezone."""
    tz = ZoneInfo(tz_name or settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def combine(d: date, t: time) -> datetime:
    return datetime.combine(d, t)


def add_minutes(dt: datetime, minutes: int) -> datetime:
    return dt + timedelta(minutes=minutes)


def minutes_between(start: time, end: time) -> int:
    anchor = date(2000, 1, 1)
    return int((combine(anchor, end) - combine(anchor, start)).total_seconds() // 60)


def fmt_time(t: time) -> str:
    return t.strftime("%H:%M")
