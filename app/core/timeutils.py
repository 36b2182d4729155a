from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from stores that drop tzinfo."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_wall_clock(now: datetime, tz_name: str) -> datetime:
    """Convert an instant to a naive wall-clock datetime in ``tz_name``."""
    return ensure_utc(now).astimezone(ZoneInfo(tz_name)).replace(tzinfo=None)


def minutes_of_day(t: time) -> int:
    return t.hour * 60 + t.minute


def ceil_minutes_of_day(t: time) -> int:
    """Like minutes_of_day, rounding a time with seconds up to the next whole minute."""
    return minutes_of_day(t) + (1 if (t.second or t.microsecond) else 0)


def time_from_minutes(minutes: int) -> time:
    return (datetime.min + timedelta(minutes=minutes)).time()


def time_to_str(t: time | None) -> str | None:
    if t is None:
        return None
    return t.strftime("%H:%M")


def str_to_time(s: str) -> time:
    return datetime.strptime(s, "%H:%M").time()


def combine(d: date, t: time) -> datetime:
    return datetime.combine(d, t)
