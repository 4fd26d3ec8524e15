import re
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    # sqlite hands timestamps back without tzinfo; everything is stored as UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def at_local_time(day: date, hhmm: str, tz_name: str) -> datetime:
    """UTC instant of `hhmm` on `day` in the venue timezone."""
    minutes = time_to_minutes(hhmm)
    local = datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=ZoneInfo(tz_name))
    return local.astimezone(timezone.utc)


def _part(parts: list[str], idx: int) -> int:
    try:
        return int(parts[idx])
    except (IndexError, ValueError):
        return 0


def time_to_minutes(hhmm: str) -> int:
    """
    "HH:mm" -> minutes since midnight.
    Missing or garbled parts count as 0 instead of raising.
    """
    parts = (hhmm or "").strip().split(":")
    return _part(parts, 0) * 60 + _part(parts, 1)


def minutes_to_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def is_valid_time(hhmm: str) -> bool:
    return bool(_HHMM.match(hhmm or ""))


def overlaps(start_a: str, end_a: str, start_b: str, end_b: str) -> bool:
    # half-open: 09:00-10:00 and 10:00-11:00 do not overlap
    return (
        time_to_minutes(start_a) < time_to_minutes(end_b)
        and time_to_minutes(start_b) < time_to_minutes(end_a)
    )


def duration_hours(start: str, end: str) -> float:
    return (time_to_minutes(end) - time_to_minutes(start)) / 60


def generate_hourly_slots(start_hour: int = 6, end_hour: int = 23) -> list[str]:
    return [f"{hour:02d}:00" for hour in range(start_hour, end_hour)]


def format_time(hhmm: str) -> str:
    """18:30 -> 6:30 PM"""
    parts = (hhmm or "").split(":")
    hour = _part(parts, 0)
    minutes = parts[1] if len(parts) > 1 and parts[1] else "00"
    suffix = "PM" if hour >= 12 else "AM"
    return f"{hour % 12 or 12}:{minutes} {suffix}"
