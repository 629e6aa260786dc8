import json
import logging

import aio_pika
from dateutil import parser

from shared.idempotency import claim_event, release_event
from shared.rabbitmq import connect, declare_exchange
from .errors import NotFound
from .lifecycle import PAYMENT_CAPTURED, PAYMENT_REFUNDED, LifecycleController

logger = logging.getLogger(__name__)

QUEUE_NAME = "booking_service_payment_events"
ROUTING_KEYS = [PAYMENT_CAPTURED, PAYMENT_REFUNDED]


def _occurred_at(data: dict):
    raw = data.get("captured_at") or data.get("occurred_at")
    if not raw:
        return None
    try:
        return parser.isoparse(raw)
    except ValueError:
        logger.warning("ignoring unparseable payment timestamp %r", raw)
        return None


async def handle_payment_event(payload: dict, lifecycle: LifecycleController, redis_client) -> bool:
    """
    Apply one payment gateway event. Returns False for anything skipped:
    unknown types, missing ids, duplicates and unknown bookings.
    """
    event_id = payload.get("event_id")
    event_type = payload.get("event_type")
    data = payload.get("data") or {}
    booking_id = data.get("booking_id")

    if event_type not in ROUTING_KEYS or not event_id or not booking_id:
        return False

    if not await claim_event(redis_client, event_id):
        logger.info("skipping duplicate event %s", event_id)
        return False

    try:
        await lifecycle.apply_payment_event(booking_id, event_type, _occurred_at(data))
    except NotFound:
        logger.warning("payment event %s references unknown booking %s", event_id, booking_id)
        return False
    except Exception:
        await release_event(redis_client, event_id)
        raise

    return True


def make_handler(lifecycle: LifecycleController, redis_client):
    async def handle_message(message: aio_pika.IncomingMessage):
        async with message.process(requeue=False):
            try:
                payload = json.loads(message.body.decode("utf-8"))
            except ValueError:
                logger.warning("dropping undecodable message %s", message.message_id)
                return

            await handle_payment_event(payload, lifecycle, redis_client)

    return handle_message


async def start_consumer(rabbit_url: str, lifecycle: LifecycleController, redis_client):
    conn = await connect(rabbit_url)
    channel = await conn.channel()
    await channel.set_qos(prefetch_count=50)

    exchange = await declare_exchange(channel)

    queue = await channel.declare_queue(QUEUE_NAME, durable=True)
    for rk in ROUTING_KEYS:
        await queue.bind(exchange, routing_key=rk)

    await queue.consume(make_handler(lifecycle, redis_client))
    logger.info("payment consumer started on %s", QUEUE_NAME)
    return conn
