import logging

import aio_pika
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from shared.events import parse_event
from shared.idempotency import claim_event, release_event
from shared.rabbitmq import connect, declare_exchange

from .bookings import update_payment_status
from .config import RABBIT_URL
from .errors import BookingError
from .redis_client import redis_client

logger = logging.getLogger(__name__)

QUEUE_NAME = "booking_service_payment_events"
ROUTING_KEYS = ["payment.succeeded"]

# worth redelivering: the next attempt may find the database or redis back
TRANSIENT_ERRORS = (SQLAlchemyError, RedisError, OSError)


def _payment_fields(payload: dict) -> tuple[str, str] | None:
    data = payload.get("data")
    if not isinstance(data, dict):
        return None
    booking_id = data.get("booking_id")
    payee_id = data.get("payee_id")
    if not isinstance(booking_id, str) or not isinstance(payee_id, str):
        return None
    if not booking_id or not payee_id:
        return None
    return booking_id, payee_id


async def handle_event(payload: dict, session_factory, redis=redis_client) -> bool:
    """
    Apply one payment event. Returns True when a booking was updated.
    Malformed events and domain failures (expired, unknown payee...) are logged
    and dropped: redelivering them would fail the same way.
    """
    event_id = payload["event_id"]
    if payload["event_type"] not in ROUTING_KEYS:
        return False

    fields = _payment_fields(payload)
    if fields is None:
        logger.warning("payment event %s has no usable booking_id/payee_id: %r", event_id, payload.get("data"))
        return False
    booking_id, payee_id = fields

    if not await claim_event(redis, event_id):
        return False

    try:
        async with session_factory() as db:
            await update_payment_status(db, booking_id, payee_id)
    except BookingError as e:
        logger.warning("payment event %s for booking %s rejected: %s", event_id, booking_id, e.message)
        return False
    except Exception:
        # let a redelivery retry it
        await release_event(redis, event_id)
        raise
    return True


def make_handler(session_factory):
    async def handle_message(message: aio_pika.IncomingMessage):
        async with message.process(requeue=False, ignore_processed=True):
            payload = parse_event(message.body)
            if payload is None:
                logger.warning("dropping undecodable message %s", message.message_id)
                return
            try:
                await handle_event(payload, session_factory)
            except TRANSIENT_ERRORS as e:
                logger.warning("payment event %s failed, requeueing: %s", payload["event_id"], e)
                await message.nack(requeue=True)

    return handle_message


async def start_consumer(session_factory):
    conn = await connect(RABBIT_URL)
    if conn is None:
        return None

    channel = await conn.channel()
    await channel.set_qos(prefetch_count=50)
    exchange = await declare_exchange(channel)

    queue = await channel.declare_queue(QUEUE_NAME, durable=True)
    for rk in ROUTING_KEYS:
        await queue.bind(exchange, routing_key=rk)

    await queue.consume(make_handler(session_factory))
    logger.info("payment event consumer started")
    return conn
