from datetime import timedelta

import pytest

from booking_service import bookings
from booking_service.errors import (
    BookingExpiredError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from booking_service.expiry_worker import expire_old_bookings
from booking_service.schemas import BookingStatus, PaymentStatus, ServiceMode, WeeklyWindow
from conftest import BOOKING_DAY, NOW, make_request


async def _initiate(db, catalog, locks, **overrides):
    return await bookings.initiate_booking(db, catalog, make_request(**overrides), now=NOW, locks=locks)


async def _confirmed(db, catalog, locks, **overrides):
    result = await _initiate(db, catalog, locks, **overrides)
    return await bookings.confirm_mock_payment(db, result.booking.id, now=NOW + timedelta(minutes=1))


@pytest.mark.asyncio
async def test_initiate_venue_only_booking(db, catalog, locks):
    result = await _initiate(db, catalog, locks)
    booking = result.booking

    assert booking.status == BookingStatus.PENDING_PAYMENT
    assert booking.total_amount == 800.00
    assert booking.expires_at == NOW + timedelta(minutes=10)
    assert booking.verification_token is None
    assert booking.qr_code is None

    payments = booking.payment_records()
    assert len(payments) == 1
    assert payments[0].payee_id == "owner-1"
    assert payments[0].status == PaymentStatus.PENDING

    assert len(result.payment_links) == 1
    assert f"bookingId={booking.id}" in result.payment_links[0].payment_link


@pytest.mark.asyncio
async def test_initiate_with_coach_splits_payment(db, catalog, locks):
    result = await _initiate(db, catalog, locks, coach_id="coach-1", end_time="15:30")
    booking = result.booking

    assert booking.total_amount == 1200.00 + 750.00
    amounts = {p.payee_id: p.amount for p in booking.payment_records()}
    assert amounts == {"owner-1": 1200.00, "coach-user-1": 750.00}


@pytest.mark.asyncio
async def test_single_payment_confirms_and_issues_qr(db, catalog, locks):
    result = await _initiate(db, catalog, locks)
    paid_at = NOW + timedelta(minutes=2)

    booking = await bookings.update_payment_status(db, result.booking.id, "owner-1", now=paid_at)

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.verification_token
    assert booking.qr_code.startswith("data:image/png;base64,")
    payment = booking.payment_records()[0]
    assert payment.status == PaymentStatus.PAID
    assert payment.paid_at == paid_at


@pytest.mark.asyncio
async def test_partial_payment_keeps_booking_pending(db, catalog, locks):
    result = await _initiate(db, catalog, locks, coach_id="coach-1")
    booking_id = result.booking.id

    booking = await bookings.update_payment_status(db, booking_id, "owner-1", now=NOW + timedelta(minutes=1))
    assert booking.status == BookingStatus.PENDING_PAYMENT
    assert booking.verification_token is None
    assert booking.qr_code is None

    booking = await bookings.update_payment_status(db, booking_id, "coach-user-1", now=NOW + timedelta(minutes=2))
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.verification_token
    assert all(p.status == PaymentStatus.PAID for p in booking.payment_records())


@pytest.mark.asyncio
async def test_repeated_payment_is_idempotent(db, catalog, locks):
    result = await _initiate(db, catalog, locks)
    first = await bookings.update_payment_status(db, result.booking.id, "owner-1", now=NOW + timedelta(minutes=1))
    token = first.verification_token
    paid_at = first.payment_records()[0].paid_at

    again = await bookings.update_payment_status(db, result.booking.id, "owner-1", now=NOW + timedelta(minutes=5))

    assert again.status == BookingStatus.CONFIRMED
    assert again.verification_token == token
    assert again.payment_records()[0].paid_at == paid_at


@pytest.mark.asyncio
async def test_payment_for_unknown_payee_is_rejected(db, catalog, locks):
    result = await _initiate(db, catalog, locks)
    with pytest.raises(ValidationError) as exc:
        await bookings.update_payment_status(db, result.booking.id, "stranger", now=NOW)
    assert exc.value.code == "payee_not_found"


@pytest.mark.asyncio
async def test_only_paid_status_can_be_reported(db, catalog, locks):
    result = await _initiate(db, catalog, locks)
    with pytest.raises(ValidationError):
        await bookings.update_payment_status(db, result.booking.id, "owner-1", "REFUNDED", now=NOW)


@pytest.mark.asyncio
async def test_payment_for_unknown_booking(db):
    with pytest.raises(NotFoundError):
        await bookings.update_payment_status(db, "missing", "owner-1", now=NOW)


@pytest.mark.asyncio
async def test_mock_payment_settles_every_payee(db, catalog, locks):
    booking = await _confirmed(db, catalog, locks, coach_id="coach-1")
    assert booking.status == BookingStatus.CONFIRMED
    assert all(p.status == PaymentStatus.PAID for p in booking.payment_records())


@pytest.mark.asyncio
async def test_own_venue_coach_paid_once_for_both_shares(db, catalog, locks):
    catalog.add_venue("venue-2", owner_id="owner-2", price_per_hour=600)
    catalog.add_coach("coach-2", user_id="owner-2", hourly_rate=400, service_mode=ServiceMode.OWN_VENUE)

    result = await _initiate(db, catalog, locks, venue_id="venue-2", coach_id="coach-2")
    assert [p.payee_id for p in result.booking.payment_records()] == ["owner-2", "owner-2"]

    booking = await bookings.update_payment_status(db, result.booking.id, "owner-2", now=NOW + timedelta(minutes=1))
    assert booking.status == BookingStatus.CONFIRMED


# ---- conflicts ----

@pytest.mark.asyncio
async def test_overlapping_venue_booking_is_rejected(db, catalog, locks):
    await _initiate(db, catalog, locks)

    with pytest.raises(ConflictError) as exc:
        await _initiate(db, catalog, locks, user_id="player-2", start_time="14:30", end_time="15:30")
    assert exc.value.code == "venue_slot_taken"
    assert "from 2:00 PM to 3:00 PM" in exc.value.message
    assert exc.value.details["booked"] == {"start_time": "14:00", "end_time": "15:00"}


@pytest.mark.asyncio
async def test_enclosing_booking_is_rejected(db, catalog, locks):
    await _initiate(db, catalog, locks)
    with pytest.raises(ConflictError):
        await _initiate(db, catalog, locks, start_time="13:00", end_time="16:00")


@pytest.mark.asyncio
async def test_adjacent_booking_is_allowed(db, catalog, locks):
    await _initiate(db, catalog, locks)
    result = await _initiate(db, catalog, locks, user_id="player-2", start_time="15:00", end_time="16:00")
    assert result.booking.status == BookingStatus.PENDING_PAYMENT


@pytest.mark.asyncio
async def test_same_slot_on_another_day_is_allowed(db, catalog, locks):
    await _initiate(db, catalog, locks)
    result = await _initiate(db, catalog, locks, date=BOOKING_DAY + timedelta(days=1))
    assert result.booking.date == BOOKING_DAY + timedelta(days=1)


@pytest.mark.asyncio
async def test_coach_cannot_be_in_two_venues_at_once(db, catalog, locks):
    catalog.add_venue("venue-3", owner_id="owner-3", allow_external_coaches=True)
    await _initiate(db, catalog, locks, coach_id="coach-1")

    with pytest.raises(ConflictError) as exc:
        await _initiate(db, catalog, locks, venue_id="venue-3", coach_id="coach-1", start_time="14:30", end_time="15:30")
    assert exc.value.code == "coach_slot_taken"


@pytest.mark.asyncio
async def test_cancelled_booking_frees_the_slot(db, catalog, locks):
    first = await _initiate(db, catalog, locks)
    await bookings.cancel_booking(db, first.booking.id, now=NOW)

    second = await _initiate(db, catalog, locks, user_id="player-2")
    assert second.booking.id != first.booking.id


@pytest.mark.asyncio
async def test_invalid_times_are_rejected(db, catalog, locks):
    with pytest.raises(ValidationError) as exc:
        await _initiate(db, catalog, locks, start_time="15:00", end_time="14:00")
    assert exc.value.code == "invalid_interval"

    with pytest.raises(ValidationError) as exc:
        await _initiate(db, catalog, locks, start_time="2pm")
    assert exc.value.code == "invalid_time"


@pytest.mark.asyncio
async def test_unknown_venue_or_coach(db, catalog, locks):
    with pytest.raises(NotFoundError):
        await _initiate(db, catalog, locks, venue_id="nope")
    with pytest.raises(NotFoundError):
        await _initiate(db, catalog, locks, coach_id="nope")


@pytest.mark.asyncio
async def test_external_coach_policy(db, catalog, locks):
    catalog.add_venue("closed-venue", owner_id="owner-9", allow_external_coaches=False)

    with pytest.raises(ConflictError) as exc:
        await _initiate(db, catalog, locks, venue_id="closed-venue", coach_id="coach-1")
    assert exc.value.code == "external_coach_not_allowed"

    catalog.add_coach("house-coach", user_id="owner-9", service_mode=ServiceMode.OWN_VENUE)
    result = await _initiate(db, catalog, locks, venue_id="closed-venue", coach_id="house-coach")
    assert result.booking.coach_id == "house-coach"


@pytest.mark.asyncio
async def test_coach_outside_weekly_hours(db, catalog, locks):
    # Tuesday is day 2; only Monday hours are published
    catalog.add_coach(
        "monday-coach",
        windows=[WeeklyWindow(day_of_week=1, start_time="08:00", end_time="20:00")],
    )
    with pytest.raises(ConflictError) as exc:
        await _initiate(db, catalog, locks, coach_id="monday-coach")
    assert exc.value.code == "coach_unavailable"
    assert exc.value.message == "Coach is not available from 2:00 PM to 3:00 PM"


# ---- expiry ----

@pytest.mark.asyncio
async def test_swept_booking_cannot_be_paid(db, catalog, locks):
    result = await _initiate(db, catalog, locks)

    assert await expire_old_bookings(db, now=NOW + timedelta(minutes=11)) == 1

    with pytest.raises(BookingExpiredError) as exc:
        await bookings.update_payment_status(db, result.booking.id, "owner-1", now=NOW + timedelta(minutes=12))
    assert exc.value.status_code == 410

    booking = await bookings.get_booking(db, result.booking.id)
    assert booking.status == BookingStatus.EXPIRED
    assert booking.verification_token is None
    assert booking.payment_records()[0].status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_late_payment_expires_booking(db, catalog, locks):
    result = await _initiate(db, catalog, locks)

    with pytest.raises(BookingExpiredError):
        await bookings.update_payment_status(db, result.booking.id, "owner-1", now=NOW + timedelta(minutes=10, seconds=1))

    booking = await bookings.get_booking(db, result.booking.id)
    assert booking.status == BookingStatus.EXPIRED


@pytest.mark.asyncio
async def test_short_hold_expires_quickly(db, catalog, locks):
    result = await bookings.initiate_booking(
        db, catalog, make_request(), now=NOW, hold=timedelta(seconds=30), locks=locks
    )
    assert await expire_old_bookings(db, now=NOW + timedelta(seconds=29)) == 0
    assert await expire_old_bookings(db, now=NOW + timedelta(seconds=31)) == 1

    # the expired hold no longer blocks the slot
    again = await _initiate(db, catalog, locks, user_id="player-2")
    assert again.booking.id != result.booking.id


@pytest.mark.asyncio
async def test_sweeper_leaves_confirmed_bookings_alone(db, catalog, locks):
    booking = await _confirmed(db, catalog, locks)
    assert await expire_old_bookings(db, now=NOW + timedelta(hours=1)) == 0
    assert (await bookings.get_booking(db, booking.id)).status == BookingStatus.CONFIRMED


# ---- check-in and later transitions ----

@pytest.mark.asyncio
async def test_check_in_window(db, catalog, locks):
    booking = await _confirmed(db, catalog, locks)
    token = booking.verification_token
    start = NOW.replace(year=2030, month=6, day=4, hour=14, minute=0)

    with pytest.raises(InvalidStateError) as exc:
        await bookings.check_in_booking(db, token, now=start - timedelta(minutes=20), tz_name="UTC")
    assert exc.value.code == "check_in_too_early"

    booking = await bookings.check_in_booking(db, token, now=start - timedelta(minutes=15), tz_name="UTC")
    assert booking.status == BookingStatus.IN_PROGRESS
    assert booking.checked_in_at == start - timedelta(minutes=15)


@pytest.mark.asyncio
async def test_check_in_requires_confirmed_booking(db, catalog, locks):
    booking = await _confirmed(db, catalog, locks)
    start = NOW.replace(day=4, hour=14)
    await bookings.check_in_booking(db, booking.verification_token, now=start, tz_name="UTC")

    with pytest.raises(InvalidStateError):
        await bookings.check_in_booking(db, booking.verification_token, now=start, tz_name="UTC")


@pytest.mark.asyncio
async def test_check_in_with_unknown_token(db):
    with pytest.raises(NotFoundError) as exc:
        await bookings.check_in_booking(db, "not-a-token", now=NOW)
    assert exc.value.code == "unknown_token"


@pytest.mark.asyncio
async def test_verify_booking_by_token(db, catalog, locks):
    booking = await _confirmed(db, catalog, locks)
    found = await bookings.verify_booking(db, booking.verification_token)
    assert found.id == booking.id


@pytest.mark.asyncio
async def test_complete_requires_check_in(db, catalog, locks):
    booking = await _confirmed(db, catalog, locks)
    with pytest.raises(InvalidStateError):
        await bookings.complete_booking(db, booking.id, now=NOW)

    await bookings.check_in_booking(db, booking.verification_token, now=NOW.replace(day=4, hour=14), tz_name="UTC")
    done = await bookings.complete_booking(db, booking.id, now=NOW.replace(day=4, hour=15))
    assert done.status == BookingStatus.COMPLETED


@pytest.mark.asyncio
async def test_no_show_rules(db, catalog, locks):
    pending = await _initiate(db, catalog, locks)
    with pytest.raises(InvalidStateError):
        await bookings.mark_no_show(db, pending.booking.id, now=NOW)

    booking = await _confirmed(db, catalog, locks, start_time="16:00", end_time="17:00")
    marked = await bookings.mark_no_show(db, booking.id, now=NOW)
    assert marked.status == BookingStatus.NO_SHOW


@pytest.mark.asyncio
async def test_cancel_terminal_booking_is_rejected(db, catalog, locks):
    result = await _initiate(db, catalog, locks)
    await bookings.cancel_booking(db, result.booking.id, now=NOW)

    with pytest.raises(InvalidStateError) as exc:
        await bookings.cancel_booking(db, result.booking.id, now=NOW)
    assert exc.value.code == "already_terminal"


@pytest.mark.asyncio
async def test_cancelled_booking_cannot_be_paid(db, catalog, locks):
    result = await _initiate(db, catalog, locks)
    await bookings.cancel_booking(db, result.booking.id, now=NOW)

    with pytest.raises(InvalidStateError):
        await bookings.update_payment_status(db, result.booking.id, "owner-1", now=NOW)


@pytest.mark.asyncio
async def test_get_unknown_booking(db):
    with pytest.raises(NotFoundError):
        await bookings.get_booking(db, "missing")


# ---- listings ----

@pytest.mark.asyncio
async def test_user_bookings_newest_first(db, catalog, locks):
    await _initiate(db, catalog, locks, start_time="09:00", end_time="10:00")
    await _initiate(db, catalog, locks, start_time="11:00", end_time="12:00")
    await _initiate(db, catalog, locks, date=BOOKING_DAY + timedelta(days=1))
    await _initiate(db, catalog, locks, user_id="someone-else", start_time="18:00", end_time="19:00")

    page = await bookings.list_bookings_for_user(db, "player-1")
    assert page.total == 3
    assert [(b.date, b.start_time) for b in page.items] == [
        (BOOKING_DAY + timedelta(days=1), "14:00"),
        (BOOKING_DAY, "11:00"),
        (BOOKING_DAY, "09:00"),
    ]


@pytest.mark.asyncio
async def test_pagination(db, catalog, locks):
    for hour in range(8, 13):
        await _initiate(db, catalog, locks, start_time=f"{hour:02d}:00", end_time=f"{hour + 1:02d}:00")

    page = await bookings.list_bookings_for_user(db, "player-1", page=2, limit=2)
    assert page.total == 5
    assert page.total_pages == 3
    assert [b.start_time for b in page.items] == ["10:00", "09:00"]

    last = await bookings.list_bookings_for_user(db, "player-1", page=3, limit=2)
    assert [b.start_time for b in last.items] == ["08:00"]

    with pytest.raises(ValidationError):
        await bookings.list_bookings_for_user(db, "player-1", page=0)
    with pytest.raises(ValidationError):
        await bookings.list_bookings_for_user(db, "player-1", limit=bookings.MAX_PAGE_SIZE + 1)


@pytest.mark.asyncio
async def test_venue_listing_shows_only_active_bookings(db, catalog, locks):
    await _initiate(db, catalog, locks, start_time="16:00", end_time="17:00")
    cancelled = await _initiate(db, catalog, locks, start_time="10:00", end_time="11:00")
    await bookings.cancel_booking(db, cancelled.booking.id, now=NOW)
    await _initiate(db, catalog, locks, start_time="08:00", end_time="09:00")

    page = await bookings.list_bookings_for_venue(db, "venue-1")
    assert [b.start_time for b in page.items] == ["08:00", "16:00"]


@pytest.mark.asyncio
async def test_venue_lister_sees_all_owned_venues(db, catalog, locks):
    catalog.add_venue("venue-1b", owner_id="owner-1")
    catalog.add_venue("elsewhere", owner_id="owner-7")
    await _initiate(db, catalog, locks)
    await _initiate(db, catalog, locks, venue_id="venue-1b")
    await _initiate(db, catalog, locks, venue_id="elsewhere")

    page = await bookings.list_bookings_for_venue_lister(db, catalog, "owner-1")
    assert page.total == 2
    assert {b.venue_id for b in page.items} == {"venue-1", "venue-1b"}

    empty = await bookings.list_bookings_for_venue_lister(db, catalog, "nobody")
    assert empty.items == [] and empty.total == 0
