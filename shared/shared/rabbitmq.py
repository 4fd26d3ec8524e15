import asyncio
import logging

import aio_pika

from .events import to_json

EXCHANGE_NAME = "domain_events"

logger = logging.getLogger(__name__)


async def connect(rabbit_url: str | None):
    if not rabbit_url:
        return None
    return await aio_pika.connect_robust(rabbit_url)


async def declare_exchange(channel):
    return await channel.declare_exchange(EXCHANGE_NAME, aio_pika.ExchangeType.TOPIC, durable=True)


def build_message(event: dict) -> aio_pika.Message:
    return aio_pika.Message(
        body=to_json(event).encode("utf-8"),
        content_type="application/json",
        message_id=event.get("event_id"),
        delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
    )


class RabbitPublisher:
    """
    Sends event envelopes to the domain exchange, routed by event type.

    Without a broker URL it is a no-op. Publishing never raises: a broker
    outage is logged and the caller carries on.
    """

    def __init__(self, rabbit_url: str | None, service_name: str):
        self.rabbit_url = rabbit_url
        self.service_name = service_name
        self._connection = None
        self._exchange = None
        self._connect_lock: asyncio.Lock | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.rabbit_url)

    @property
    def connected(self) -> bool:
        return (
            self._exchange is not None
            and self._connection is not None
            and not self._connection.is_closed
        )

    async def connect(self):
        if not self.enabled or self.connected:
            return
        if self._connect_lock is None:
            self._connect_lock = asyncio.Lock()

        async with self._connect_lock:
            if self.connected:
                return
            connection = await connect(self.rabbit_url)
            try:
                exchange = await declare_exchange(await connection.channel())
            except Exception:
                await connection.close()
                raise
            self._connection, self._exchange = connection, exchange
            logger.info("%s connected to exchange %s", self.service_name, EXCHANGE_NAME)

    async def publish(self, event: dict) -> bool:
        if not self.enabled:
            return False

        routing_key = event["event_type"]
        try:
            await self.connect()
            await self._exchange.publish(build_message(event), routing_key=routing_key)
        except Exception as e:
            logger.warning("%s could not publish %s (%s): %s", self.service_name, routing_key, event.get("event_id"), e)
            return False
        return True

    async def close(self):
        connection = self._connection
        self._connection = self._exchange = None
        if connection is not None and not connection.is_closed:
            await connection.close()
