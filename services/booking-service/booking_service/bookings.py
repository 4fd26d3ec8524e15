"""
Booking lifecycle.

    PENDING_PAYMENT -> CONFIRMED -> IN_PROGRESS -> COMPLETED
          |               |             |
          |               +-------------+--> NO_SHOW
          +--> EXPIRED (hold window elapsed)
    any non-terminal state --> CANCELLED

Every write is guarded by the booking's version column, so a concurrent
sweeper expiry or payment update makes the losing write fail instead of
overwriting the winner.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from .availability import ResourceKind, find_conflict, validate_interval, within_coach_hours
from .catalog import Catalog
from .config import BOOKING_HOLD_MINUTES, BOOKING_TIMEZONE, CHECK_IN_WINDOW_MINUTES
from .errors import (
    BookingExpiredError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from .locks import SlotLocks, guard_slots, slot_key, slot_locks
from .models import Booking
from .payments import (
    attach_payment_links,
    calculate_price,
    calculate_split_amounts,
    validate_payment_status,
)
from .publisher import booking_payload, publish_event
from .schemas import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    BookingStatus,
    InitiateBookingRequest,
    PaymentLink,
    PaymentStatus,
    ServiceMode,
)
from .timeslots import as_utc, at_local_time, format_time, utcnow
from .verification import issue_verification

logger = logging.getLogger(__name__)

WRITE_ATTEMPTS = 3
MAX_PAGE_SIZE = 100


@dataclass
class InitiatedBooking:
    booking: Booking
    payment_links: list[PaymentLink]


@dataclass
class Page:
    items: list[Booking]
    total: int
    page: int
    total_pages: int


# ---- helpers ----

def _slot_conflict(kind: ResourceKind, resource_id: str, data: InitiateBookingRequest, existing: Booking) -> ConflictError:
    return ConflictError(
        f"This {kind.value} is already booked from {format_time(existing.start_time)} "
        f"to {format_time(existing.end_time)} on {data.date.isoformat()}",
        code=f"{kind.value}_slot_taken",
        details={
            "resource": kind.value,
            "resource_id": resource_id,
            "date": data.date.isoformat(),
            "requested": {"start_time": data.start_time, "end_time": data.end_time},
            "booked": {"start_time": existing.start_time, "end_time": existing.end_time},
        },
    )


async def _load(db: AsyncSession, booking_id: str) -> Booking:
    booking = await db.get(Booking, booking_id, populate_existing=True)
    if booking is None:
        raise NotFoundError("Booking not found", details={"booking_id": booking_id})
    return booking


async def _load_by_token(db: AsyncSession, token: str) -> Booking:
    res = await db.execute(
        select(Booking)
        .where(Booking.verification_token == token)
        .execution_options(populate_existing=True)
    )
    booking = res.scalar_one_or_none()
    if booking is None:
        raise NotFoundError("Invalid verification token", code="unknown_token")
    return booking


async def _commit(db: AsyncSession, booking_id: str):
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        current = await _load(db, booking_id)
        if current.status == BookingStatus.EXPIRED:
            raise BookingExpiredError(booking_id) from None
        raise InvalidStateError(
            f"Booking changed concurrently; status is now {current.status.value}",
            code="concurrent_update",
            details={"booking_id": booking_id, "status": current.status.value},
        ) from None


def _require_status(booking: Booking, allowed: tuple[BookingStatus, ...], action: str):
    if booking.status not in allowed:
        raise InvalidStateError(
            f"Cannot {action} a booking with status {booking.status.value}",
            code="invalid_status",
            details={
                "booking_id": booking.id,
                "status": booking.status.value,
                "allowed": [s.value for s in allowed],
            },
        )


async def _expire_if_pending(db: AsyncSession, booking: Booking, now: datetime) -> bool:
    """Same precondition as the sweeper: only a still-pending booking flips."""
    res = await db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == BookingStatus.PENDING_PAYMENT)
        .values(status=BookingStatus.EXPIRED, version=Booking.version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(booking)
    return res.rowcount > 0


# ---- initiate ----

async def initiate_booking(
    db: AsyncSession,
    catalog: Catalog,
    data: InitiateBookingRequest,
    *,
    now: datetime | None = None,
    hold: timedelta | None = None,
    locks: SlotLocks = slot_locks,
) -> InitiatedBooking:
    now = now or utcnow()
    hold = hold if hold is not None else timedelta(minutes=BOOKING_HOLD_MINUTES)
    validate_interval(data.start_time, data.end_time)

    keys = [slot_key(ResourceKind.VENUE.value, data.venue_id, data.date)]
    if data.coach_id:
        keys.append(slot_key(ResourceKind.COACH.value, data.coach_id, data.date))

    async with locks.hold(*keys):
        venue = await catalog.get_venue(data.venue_id)
        if venue is None:
            raise NotFoundError("Venue not found", details={"venue_id": data.venue_id})

        try:
            # held until commit; keeps writers in other processes out even without redis
            await guard_slots(db, keys, now)

            existing = await find_conflict(
                db, ResourceKind.VENUE, data.venue_id, data.date, data.start_time, data.end_time
            )
            if existing is not None:
                logger.info("venue %s already booked %s %s-%s", data.venue_id, data.date, existing.start_time, existing.end_time)
                raise _slot_conflict(ResourceKind.VENUE, data.venue_id, data, existing)

            venue_price = calculate_price(data.start_time, data.end_time, venue.price_per_hour)

            coach_price = 0.0
            coach_user_id = None
            if data.coach_id:
                coach = await catalog.get_coach(data.coach_id)
                if coach is None:
                    raise NotFoundError("Coach not found", details={"coach_id": data.coach_id})

                if coach.service_mode != ServiceMode.OWN_VENUE and not venue.allow_external_coaches:
                    raise ConflictError(
                        "This venue does not allow external coaches",
                        code="external_coach_not_allowed",
                        details={"venue_id": data.venue_id, "coach_id": data.coach_id},
                    )

                if not within_coach_hours(coach, data.date, data.start_time, data.end_time, data.sport):
                    raise ConflictError(
                        f"Coach is not available from {format_time(data.start_time)} to {format_time(data.end_time)}",
                        code="coach_unavailable",
                        details={
                            "coach_id": data.coach_id,
                            "date": data.date.isoformat(),
                            "requested": {"start_time": data.start_time, "end_time": data.end_time},
                        },
                    )

                existing = await find_conflict(
                    db, ResourceKind.COACH, data.coach_id, data.date, data.start_time, data.end_time
                )
                if existing is not None:
                    raise _slot_conflict(ResourceKind.COACH, data.coach_id, data, existing)

                coach_price = calculate_price(data.start_time, data.end_time, coach.hourly_rate)
                coach_user_id = coach.user_id

            # id is fixed up front so the payment links already point at it
            booking_id = str(uuid.uuid4())
            payments = attach_payment_links(
                calculate_split_amounts(venue_price, venue.owner_id, coach_price or None, coach_user_id),
                booking_id,
            )

            booking = Booking(
                id=booking_id,
                user_id=data.user_id,
                venue_id=data.venue_id,
                coach_id=data.coach_id,
                sport=data.sport,
                date=data.date,
                start_time=data.start_time,
                end_time=data.end_time,
                total_amount=round(venue_price + coach_price, 2),
                status=BookingStatus.PENDING_PAYMENT,
                expires_at=now + hold,
                participant_name=data.participant_name,
                participant_user_id=data.participant_user_id,
                participant_age=data.participant_age,
                created_at=now,
                updated_at=now,
            )
            booking.set_payment_records(payments)
            db.add(booking)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.info(
        "booking %s initiated: venue=%s coach=%s %s %s-%s total=%.2f",
        booking.id, booking.venue_id, booking.coach_id, booking.date,
        booking.start_time, booking.end_time, booking.total_amount,
    )
    await publish_event("booking.initiated", booking_payload(booking))

    links = [
        PaymentLink(
            payee_id=p.payee_id,
            payee_role=p.payee_role,
            amount=p.amount,
            payment_link=p.payment_link,
        )
        for p in payments
    ]
    return InitiatedBooking(booking=booking, payment_links=links)


# ---- payments ----

async def _settle(db: AsyncSession, booking_id: str, payee_id: str | None, now: datetime) -> Booking:
    """
    Mark one payee (or, with payee_id=None, every pending payee) as paid.
    Retries when another writer bumped the version between read and commit.
    """
    for _ in range(WRITE_ATTEMPTS):
        booking = await _load(db, booking_id)

        if booking.status == BookingStatus.EXPIRED:
            raise BookingExpiredError(booking.id)

        if booking.status == BookingStatus.PENDING_PAYMENT and now > as_utc(booking.expires_at):
            if await _expire_if_pending(db, booking, now):
                logger.info("booking %s expired on late payment", booking.id)
                await publish_event("booking.expired", {"booking_id": booking.id})
            raise BookingExpiredError(booking.id)

        payments = booking.payment_records()
        if payee_id is not None and not any(p.payee_id == payee_id for p in payments):
            raise ValidationError(
                "Payment not found for this payee",
                code="payee_not_found",
                details={"booking_id": booking.id, "payee_id": payee_id},
            )

        def is_due(p) -> bool:
            return p.status != PaymentStatus.PAID and (payee_id is None or p.payee_id == payee_id)

        if not any(is_due(p) for p in payments):
            # already settled: no new paid_at, no new token
            return booking

        _require_status(booking, (BookingStatus.PENDING_PAYMENT,), "pay for")

        updated = [
            p.model_copy(update={"status": PaymentStatus.PAID, "paid_at": now}) if is_due(p) else p
            for p in payments
        ]
        booking.set_payment_records(updated)
        booking.updated_at = now

        confirmed = validate_payment_status(updated)
        if confirmed:
            booking.status = BookingStatus.CONFIRMED
            if not booking.verification_token:
                booking.verification_token, booking.qr_code = issue_verification()

        try:
            await db.commit()
        except StaleDataError:
            await db.rollback()
            logger.info("booking %s changed during payment update, retrying", booking_id)
            continue

        if confirmed:
            logger.info("booking %s confirmed", booking.id)
            await publish_event("booking.confirmed", booking_payload(booking))
        return booking

    raise ConflictError(
        "Booking is being updated concurrently; try again",
        code="concurrent_update",
        details={"booking_id": booking_id},
    )


async def update_payment_status(
    db: AsyncSession,
    booking_id: str,
    payee_id: str,
    status: str = PaymentStatus.PAID.value,
    *,
    now: datetime | None = None,
) -> Booking:
    if status != PaymentStatus.PAID:
        raise ValidationError(
            "Only PAID can be reported for a payment",
            code="invalid_payment_status",
            details={"status": str(status)},
        )
    return await _settle(db, booking_id, payee_id, now or utcnow())


async def confirm_mock_payment(db: AsyncSession, booking_id: str, *, now: datetime | None = None) -> Booking:
    return await _settle(db, booking_id, None, now or utcnow())


# ---- state transitions ----

async def cancel_booking(db: AsyncSession, booking_id: str, *, now: datetime | None = None) -> Booking:
    booking = await _load(db, booking_id)
    if booking.status in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Booking is already {booking.status.value}",
            code="already_terminal",
            details={"booking_id": booking.id, "status": booking.status.value},
        )
    booking.status = BookingStatus.CANCELLED
    booking.updated_at = now or utcnow()
    await _commit(db, booking_id)

    logger.info("booking %s cancelled", booking.id)
    await publish_event("booking.cancelled", booking_payload(booking))
    return booking


async def check_in_booking(
    db: AsyncSession,
    verification_token: str,
    *,
    now: datetime | None = None,
    tz_name: str = BOOKING_TIMEZONE,
) -> Booking:
    now = now or utcnow()
    booking = await _load_by_token(db, verification_token)
    _require_status(booking, (BookingStatus.CONFIRMED,), "check in")

    opens_at = at_local_time(booking.date, booking.start_time, tz_name) - timedelta(minutes=CHECK_IN_WINDOW_MINUTES)
    if now < opens_at:
        raise InvalidStateError(
            f"Check-in opens {CHECK_IN_WINDOW_MINUTES} minutes before the booking starts",
            code="check_in_too_early",
            details={"booking_id": booking.id, "opens_at": opens_at.isoformat()},
        )

    booking.status = BookingStatus.IN_PROGRESS
    booking.checked_in_at = now
    booking.updated_at = now
    await _commit(db, booking.id)

    logger.info("booking %s checked in", booking.id)
    await publish_event("booking.checked_in", booking_payload(booking))
    return booking


async def complete_booking(db: AsyncSession, booking_id: str, *, now: datetime | None = None) -> Booking:
    booking = await _load(db, booking_id)
    _require_status(booking, (BookingStatus.IN_PROGRESS,), "complete")
    booking.status = BookingStatus.COMPLETED
    booking.updated_at = now or utcnow()
    await _commit(db, booking_id)

    logger.info("booking %s completed", booking.id)
    await publish_event("booking.completed", booking_payload(booking))
    return booking


async def mark_no_show(db: AsyncSession, booking_id: str, *, now: datetime | None = None) -> Booking:
    booking = await _load(db, booking_id)
    _require_status(booking, (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS), "mark as no-show")
    booking.status = BookingStatus.NO_SHOW
    booking.updated_at = now or utcnow()
    await _commit(db, booking_id)

    logger.info("booking %s marked no-show", booking.id)
    await publish_event("booking.no_show", booking_payload(booking))
    return booking


# ---- reads ----

async def get_booking(db: AsyncSession, booking_id: str) -> Booking:
    return await _load(db, booking_id)


async def verify_booking(db: AsyncSession, verification_token: str) -> Booking:
    return await _load_by_token(db, verification_token)


async def _paginate(db: AsyncSession, stmt, page: int, limit: int) -> Page:
    if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(
            f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}",
            code="invalid_pagination",
            details={"page": page, "limit": limit},
        )

    total = (
        await db.execute(select(func.count()).select_from(stmt.order_by(None).subquery()))
    ).scalar_one()
    res = await db.execute(stmt.offset((page - 1) * limit).limit(limit))
    return Page(
        items=list(res.scalars().all()),
        total=total,
        page=page,
        total_pages=math.ceil(total / limit),
    )


async def list_bookings_for_user(db: AsyncSession, user_id: str, page: int = 1, limit: int = 20) -> Page:
    stmt = (
        select(Booking)
        .where(Booking.user_id == user_id)
        .order_by(Booking.date.desc(), Booking.start_time.desc())
    )
    return await _paginate(db, stmt, page, limit)


async def list_bookings_for_venue(db: AsyncSession, venue_id: str, page: int = 1, limit: int = 20) -> Page:
    stmt = (
        select(Booking)
        .where(Booking.venue_id == venue_id, Booking.status.in_(ACTIVE_STATUSES))
        .order_by(Booking.date.asc(), Booking.start_time.asc())
    )
    return await _paginate(db, stmt, page, limit)


async def list_bookings_for_venue_lister(
    db: AsyncSession,
    catalog: Catalog,
    owner_id: str,
    page: int = 1,
    limit: int = 20,
) -> Page:
    venue_ids = await catalog.list_venue_ids_for_owner(owner_id)
    if not venue_ids:
        return Page(items=[], total=0, page=page, total_pages=0)

    stmt = (
        select(Booking)
        .where(Booking.venue_id.in_(venue_ids), Booking.status.in_(ACTIVE_STATUSES))
        .order_by(Booking.date.desc(), Booking.start_time.desc())
    )
    return await _paginate(db, stmt, page, limit)
