import asyncio
import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from .config import EXPIRY_SWEEP_SECONDS
from .models import Booking
from .publisher import publish_event
from .schemas import BookingStatus
from .timeslots import utcnow

logger = logging.getLogger(__name__)


async def expire_old_bookings(db: AsyncSession, now: datetime | None = None) -> int:
    """
    Flip every unpaid booking past its hold window to EXPIRED in one statement.
    The status precondition makes a concurrent payment confirmation win or lose
    cleanly; bumping the version invalidates any in-flight ORM write.
    """
    now = now or utcnow()
    res = await db.execute(
        update(Booking)
        .where(
            Booking.status == BookingStatus.PENDING_PAYMENT,
            Booking.expires_at <= now,
        )
        .values(status=BookingStatus.EXPIRED, version=Booking.version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return res.rowcount or 0


async def run_sweep(session_factory) -> int:
    async with session_factory() as db:
        count = await expire_old_bookings(db)
    if count:
        logger.info("expired %d bookings", count)
        await publish_event("booking.expired", {"count": count})
    return count


async def expiry_loop(stop_event: asyncio.Event, session_factory, interval: float = EXPIRY_SWEEP_SECONDS):
    # first sweep runs immediately, then once per interval
    while not stop_event.is_set():
        try:
            await run_sweep(session_factory)
        except Exception:
            logger.exception("booking expiry sweep failed; retrying next tick")
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue
