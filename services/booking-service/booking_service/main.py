import asyncio
import logging

from fastapi import FastAPI

from .config import LOG_LEVEL, SERVICE_NAME
from .consumer import start_consumer
from .db import SessionLocal
from .errors import BookingError, booking_error_handler
from .expiry_worker import expiry_loop
from .locks import slot_locks
from .publisher import publisher
from .routes import router

logging.basicConfig(
    level=LOG_LEVEL,
    format=f"[{SERVICE_NAME}] %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Booking Service")
app.include_router(router)
app.add_exception_handler(BookingError, booking_error_handler)

_consumer_conn = None
_stop_event = asyncio.Event()
_expiry_task = None


@app.get("/health")
async def health():
    return {"status": "ok", "service": SERVICE_NAME, "events_enabled": publisher.enabled}


@app.on_event("startup")
async def startup():
    global _consumer_conn, _expiry_task
    if not slot_locks.distributed:
        logger.warning(
            "REDIS_URL not set: slot locks are per process; "
            "concurrent bookings across workers wait on database guard rows instead"
        )

    try:
        await publisher.connect()
    except Exception as e:
        logger.warning("RabbitMQ connect failed at startup; continuing without events: %s", e)

    # payment consumer is optional; never crash the service over it
    try:
        _consumer_conn = await start_consumer(SessionLocal)
    except Exception as e:
        _consumer_conn = None
        logger.warning("payment consumer failed to start: %s", e)

    if SessionLocal is not None:
        _stop_event.clear()
        _expiry_task = asyncio.create_task(expiry_loop(_stop_event, SessionLocal))


@app.on_event("shutdown")
async def shutdown():
    global _consumer_conn, _expiry_task
    _stop_event.set()
    if _expiry_task:
        try:
            await _expiry_task
        except Exception:
            logger.exception("expiry worker stopped with an error")
        _expiry_task = None
    try:
        if _consumer_conn and not _consumer_conn.is_closed:
            await _consumer_conn.close()
    except Exception as e:
        logger.warning("closing payment consumer failed: %s", e)
    try:
        await publisher.close()
    except Exception as e:
        logger.warning("closing publisher failed: %s", e)
