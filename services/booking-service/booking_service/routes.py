from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from . import bookings
from .availability import (
    booked_intervals,
    free_hourly_slots,
    is_coach_slot_available,
    is_venue_slot_available,
    validate_interval,
)
from .catalog import Catalog, catalog
from .db import get_db
from .errors import NotFoundError
from .schemas import (
    AvailabilityResponse,
    BookingPage,
    BookingResponse,
    InitiateBookingRequest,
    InitiateBookingResponse,
    SlotCheckResponse,
)
from .timeslots import utcnow

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_catalog() -> Catalog:
    return catalog


def _page(result: bookings.Page) -> BookingPage:
    return BookingPage(
        items=[BookingResponse.model_validate(b) for b in result.items],
        total=result.total,
        page=result.page,
        total_pages=result.total_pages,
    )


@router.post("/initiate", response_model=InitiateBookingResponse, status_code=201)
async def initiate_booking(
    data: InitiateBookingRequest,
    db: AsyncSession = Depends(get_db),
    catalog: Catalog = Depends(get_catalog),
):
    result = await bookings.initiate_booking(db, catalog, data)
    return InitiateBookingResponse(
        booking=BookingResponse.model_validate(result.booking),
        payment_links=result.payment_links,
    )


@router.get("/availability/{venue_id}", response_model=AvailabilityResponse)
async def get_venue_availability(
    venue_id: str,
    date: date,
    db: AsyncSession = Depends(get_db),
    catalog: Catalog = Depends(get_catalog),
):
    if await catalog.get_venue(venue_id) is None:
        raise NotFoundError("Venue not found", details={"venue_id": venue_id})

    booked = await booked_intervals(db, venue_id, date)
    return AvailabilityResponse(
        venue_id=venue_id,
        date=date,
        booked_slots=booked,
        available_slots=free_hourly_slots(booked, date, utcnow()),
    )


@router.get("/availability/coaches/{coach_id}", response_model=SlotCheckResponse)
async def check_coach_slot(
    coach_id: str,
    date: date,
    start_time: str,
    end_time: str,
    sport: str | None = None,
    db: AsyncSession = Depends(get_db),
    catalog: Catalog = Depends(get_catalog),
):
    validate_interval(start_time, end_time)
    available = await is_coach_slot_available(db, catalog, coach_id, date, start_time, end_time, sport)
    return SlotCheckResponse(
        resource_id=coach_id, date=date, start_time=start_time, end_time=end_time, available=available
    )


@router.get("/availability/{venue_id}/slot", response_model=SlotCheckResponse)
async def check_venue_slot(
    venue_id: str,
    date: date,
    start_time: str,
    end_time: str,
    db: AsyncSession = Depends(get_db),
    catalog: Catalog = Depends(get_catalog),
):
    validate_interval(start_time, end_time)
    if await catalog.get_venue(venue_id) is None:
        raise NotFoundError("Venue not found", details={"venue_id": venue_id})

    available = await is_venue_slot_available(db, venue_id, date, start_time, end_time)
    return SlotCheckResponse(
        resource_id=venue_id, date=date, start_time=start_time, end_time=end_time, available=available
    )


@router.get("/verify/{token}", response_model=BookingResponse)
async def verify_booking(token: str, db: AsyncSession = Depends(get_db)):
    return BookingResponse.model_validate(await bookings.verify_booking(db, token))


@router.post("/check-in/{token}", response_model=BookingResponse)
async def check_in_booking(token: str, db: AsyncSession = Depends(get_db)):
    return BookingResponse.model_validate(await bookings.check_in_booking(db, token))


@router.get("/users/{user_id}", response_model=BookingPage)
async def list_user_bookings(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=bookings.MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
):
    return _page(await bookings.list_bookings_for_user(db, user_id, page, limit))


@router.get("/venues/{venue_id}", response_model=BookingPage)
async def list_venue_bookings(
    venue_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=bookings.MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
):
    return _page(await bookings.list_bookings_for_venue(db, venue_id, page, limit))


@router.get("/venue-listers/{owner_id}", response_model=BookingPage)
async def list_venue_lister_bookings(
    owner_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=bookings.MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    catalog: Catalog = Depends(get_catalog),
):
    return _page(await bookings.list_bookings_for_venue_lister(db, catalog, owner_id, page, limit))


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(booking_id: str, db: AsyncSession = Depends(get_db)):
    return BookingResponse.model_validate(await bookings.get_booking(db, booking_id))


@router.post("/{booking_id}/payments/{payee_id}/paid", response_model=BookingResponse)
async def mark_payment_paid(booking_id: str, payee_id: str, db: AsyncSession = Depends(get_db)):
    return BookingResponse.model_validate(await bookings.update_payment_status(db, booking_id, payee_id))


@router.post("/{booking_id}/mock-payment-success", response_model=BookingResponse)
async def confirm_mock_payment(booking_id: str, db: AsyncSession = Depends(get_db)):
    return BookingResponse.model_validate(await bookings.confirm_mock_payment(db, booking_id))


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(booking_id: str, db: AsyncSession = Depends(get_db)):
    return BookingResponse.model_validate(await bookings.complete_booking(db, booking_id))


@router.post("/{booking_id}/no-show", response_model=BookingResponse)
async def mark_no_show(booking_id: str, db: AsyncSession = Depends(get_db)):
    return BookingResponse.model_validate(await bookings.mark_no_show(db, booking_id))


@router.delete("/{booking_id}", response_model=BookingResponse)
async def cancel_booking(booking_id: str, db: AsyncSession = Depends(get_db)):
    return BookingResponse.model_validate(await bookings.cancel_booking(db, booking_id))
