import logging
from typing import Protocol

import aio_pika

from shared.rabbitmq import connect, declare_exchange
from .events import EventOutbox, build_event, to_json

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    async def publish(self, channel: str, event_name: str, payload: dict) -> None:
        ...


def routing_key_for(channel: str, event_name: str) -> str:
    # customer:42 + booking_assigned -> customer.42.booking_assigned
    return f"{channel.replace(':', '.')}.{event_name}"


class RabbitNotificationDispatcher:
    """Fans booking events out to channel-scoped routing keys on the domain exchange."""

    def __init__(self, rabbit_url: str | None):
        self.rabbit_url = rabbit_url
        self.enabled = bool(rabbit_url)
        self._connection: aio_pika.RobustConnection | None = None
        self._channel: aio_pika.abc.AbstractChannel | None = None
        self._exchange: aio_pika.abc.AbstractExchange | None = None

    async def connect(self):
        if not self.enabled:
            return

        if self._connection and not self._connection.is_closed:
            return

        try:
            self._connection = await connect(self.rabbit_url)
            self._channel = await self._connection.channel()
            self._exchange = await declare_exchange(self._channel)
        except Exception:
            self._connection = None
            self._channel = None
            self._exchange = None
            raise

    async def publish(self, channel: str, event_name: str, payload: dict) -> None:
        if not self.enabled:
            return

        await self.connect()

        event = build_event(event_name, {"channel": channel, **payload})
        msg = aio_pika.Message(
            body=to_json(event).encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        await self._exchange.publish(msg, routing_key=routing_key_for(channel, event_name))

    async def close(self):
        try:
            if self._connection and not self._connection.is_closed:
                await self._connection.close()
        finally:
            self._connection = None
            self._channel = None
            self._exchange = None


async def deliver(dispatcher: NotificationDispatcher, outbox: EventOutbox) -> int:
    """
    Publish committed events one by one in recording order.
    Failures are logged and skipped; returns how many were published.
    """
    delivered = 0
    for event in outbox:
        try:
            await dispatcher.publish(event.channel, event.name, event.payload)
            delivered += 1
        except Exception:
            logger.exception("failed to publish %s to %s", event.name, event.channel)
    return delivered
