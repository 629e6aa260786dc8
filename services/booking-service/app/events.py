import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

# offer resolution
OFFER_CREATED = "offer_created"
OFFER_ACCEPTED = "offer_accepted"
OFFER_REJECTED = "offer_rejected"
OFFER_UPDATED = "offer_updated"
OFFER_REOPENED = "offer_reopened"

# booking assignment
BOOKING_ASSIGNED = "booking_assigned"
BOOKING_UNASSIGNED = "booking_unassigned"
BOOKING_CANCELLED = "booking_cancelled"

# lifecycle
STATUS_UPDATE = "status_update"
PROVIDER_STARTED = "provider_started"
DRIVER_EN_ROUTE = "driver_en_route"
DRIVER_ARRIVED = "driver_arrived"
TRIP_STARTED = "trip_started"
TRIP_COMPLETED = "trip_completed"
VERIFICATION_CODE_SENT = "verification_code_sent"
PAYMENT_UPDATED = "payment_updated"

SEMANTIC_STATUS_EVENTS = {
    "started": PROVIDER_STARTED,
    "en_route": DRIVER_EN_ROUTE,
    "arrived": DRIVER_ARRIVED,
    "in_progress": TRIP_STARTED,
    "completed": TRIP_COMPLETED,
}


def customer_channel(customer_id: str) -> str:
    return f"customer:{customer_id}"


def provider_channel(provider_id: str) -> str:
    return f"provider:{provider_id}"


def booking_channel(booking_id: str) -> str:
    return f"booking:{booking_id}"


def booking_payload(booking) -> dict:
    return {
        "booking_id": booking.id,
        "booking_type": booking.booking_type,
        "customer_id": booking.customer_id,
        "provider_id": booking.provider_id,
        "status": booking.service_status,
        "payment_status": booking.payment_status,
        "scheduled_time": booking.scheduled_time,
    }


def offer_payload(offer) -> dict:
    return {
        "offer_id": offer.id,
        "booking_id": offer.booking_id,
        "provider_id": offer.provider_id,
        "status": offer.status,
        "resolution_reason": offer.resolution_reason,
    }


def record_status_change(outbox: "EventOutbox", booking):
    """Generic status_update on the booking channel plus the named event for the customer."""
    outbox.add(
        booking_channel(booking.id),
        STATUS_UPDATE,
        {"booking_id": booking.id, "status": booking.service_status},
    )
    semantic = SEMANTIC_STATUS_EVENTS.get(booking.service_status)
    if semantic:
        outbox.add(customer_channel(booking.customer_id), semantic, booking_payload(booking))


def build_event(event_type: str, data: dict) -> dict:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


def _default(value):
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(event: dict) -> str:
    return json.dumps(event, separators=(",", ":"), ensure_ascii=False, default=_default)


@dataclass(frozen=True)
class PendingEvent:
    channel: str
    name: str
    payload: dict


@dataclass
class EventOutbox:
    """
    Events recorded inside a transaction, published once it has committed.
    Publication order is recording order.
    """

    events: list[PendingEvent] = field(default_factory=list)

    def add(self, channel: str, name: str, payload: dict):
        self.events.append(PendingEvent(channel, name, payload))

    def clear(self):
        self.events.clear()

    def __iter__(self):
        return iter(list(self.events))

    def __len__(self):
        return len(self.events)
