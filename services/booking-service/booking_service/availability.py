from datetime import date, datetime
from enum import Enum
from zoneinfo import ZoneInfo

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .catalog import Catalog
from .config import AVAILABILITY_CLOSE_HOUR, AVAILABILITY_OPEN_HOUR, BOOKING_TIMEZONE
from .errors import NotFoundError, ValidationError
from .models import Booking
from .schemas import ACTIVE_STATUSES, CoachInfo, TimeRange, WeeklyWindow
from .timeslots import (
    at_local_time,
    generate_hourly_slots,
    is_valid_time,
    minutes_to_time,
    overlaps,
    time_to_minutes,
)


class ResourceKind(str, Enum):
    VENUE = "venue"
    COACH = "coach"


_RESOURCE_COLUMN = {
    ResourceKind.VENUE: Booking.venue_id,
    ResourceKind.COACH: Booking.coach_id,
}


def validate_interval(start: str, end: str):
    for field, value in (("start_time", start), ("end_time", end)):
        if not is_valid_time(value):
            raise ValidationError(
                f"{field} must be in HH:mm format",
                code="invalid_time",
                details={field: value},
            )
    if time_to_minutes(end) <= time_to_minutes(start):
        raise ValidationError(
            "end_time must be after start_time",
            code="invalid_interval",
            details={"start_time": start, "end_time": end},
        )


def _overlap_clause(start: str, end: str):
    """
    Existing [s, e) intersects candidate [start, end).
    HH:mm strings are zero padded so they compare like minute offsets.
    """
    return or_(
        # candidate starts inside an existing booking
        and_(Booking.start_time <= start, Booking.end_time > start),
        # candidate ends inside an existing booking
        and_(Booking.start_time < end, Booking.end_time >= end),
        # candidate swallows an existing booking
        and_(Booking.start_time >= start, Booking.end_time <= end),
    )


async def find_conflict(
    db: AsyncSession,
    kind: ResourceKind,
    resource_id: str,
    day: date,
    start: str,
    end: str,
) -> Booking | None:
    column = _RESOURCE_COLUMN[kind]
    res = await db.execute(
        select(Booking)
        .where(
            column == resource_id,
            Booking.date == day,
            Booking.status.in_(ACTIVE_STATUSES),
            _overlap_clause(start, end),
        )
        .order_by(Booking.start_time)
        .limit(1)
    )
    return res.scalar_one_or_none()


async def is_slot_available(
    db: AsyncSession,
    kind: ResourceKind,
    resource_id: str,
    day: date,
    start: str,
    end: str,
) -> bool:
    return await find_conflict(db, kind, resource_id, day, start, end) is None


async def is_venue_slot_available(db: AsyncSession, venue_id: str, day: date, start: str, end: str) -> bool:
    return await is_slot_available(db, ResourceKind.VENUE, venue_id, day, start, end)


def weekday_index(day: date) -> int:
    # 0 = Sunday .. 6 = Saturday
    return (day.weekday() + 1) % 7


def coach_windows(coach: CoachInfo, day: date, sport: str | None = None) -> list[WeeklyWindow]:
    windows = coach.availability
    if sport and coach.availability_by_sport.get(sport):
        windows = coach.availability_by_sport[sport]
    dow = weekday_index(day)
    return [w for w in windows if w.day_of_week == dow]


def within_coach_hours(coach: CoachInfo, day: date, start: str, end: str, sport: str | None = None) -> bool:
    s, e = time_to_minutes(start), time_to_minutes(end)
    return any(
        time_to_minutes(w.start_time) <= s and e <= time_to_minutes(w.end_time)
        for w in coach_windows(coach, day, sport)
    )


async def is_coach_slot_available(
    db: AsyncSession,
    catalog: Catalog,
    coach_id: str,
    day: date,
    start: str,
    end: str,
    sport: str | None = None,
) -> bool:
    coach = await catalog.get_coach(coach_id)
    if coach is None:
        raise NotFoundError("Coach not found", details={"coach_id": coach_id})
    if not within_coach_hours(coach, day, start, end, sport):
        return False
    return await is_slot_available(db, ResourceKind.COACH, coach_id, day, start, end)


async def booked_intervals(db: AsyncSession, venue_id: str, day: date) -> list[TimeRange]:
    res = await db.execute(
        select(Booking.start_time, Booking.end_time)
        .where(
            Booking.venue_id == venue_id,
            Booking.date == day,
            Booking.status.in_(ACTIVE_STATUSES),
        )
        .order_by(Booking.start_time)
    )
    return [TimeRange(start_time=s, end_time=e) for s, e in res.all()]


def free_hourly_slots(
    booked: list[TimeRange],
    day: date,
    now: datetime,
    tz_name: str = BOOKING_TIMEZONE,
    open_hour: int = AVAILABILITY_OPEN_HOUR,
    close_hour: int = AVAILABILITY_CLOSE_HOUR,
) -> list[str]:
    is_today = now.astimezone(ZoneInfo(tz_name)).date() == day

    free = []
    for slot in generate_hourly_slots(open_hour, close_hour):
        slot_end = minutes_to_time(time_to_minutes(slot) + 60)
        if is_today and at_local_time(day, slot, tz_name) <= now:
            continue
        if any(overlaps(slot, slot_end, b.start_time, b.end_time) for b in booked):
            continue
        free.append(slot)
    return free
