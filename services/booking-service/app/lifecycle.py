import logging
from datetime import datetime, timedelta

from . import events
from .clients import ChatSessions
from .commands import BookingCommands
from .config import CANCELLATION_LEAD_HOURS
from .errors import CancellationWindowViolated, Forbidden, InvalidTransition
from .events import booking_payload, customer_channel, provider_channel, record_status_change
from .models import (
    TERMINAL_STATUSES,
    Booking,
    OfferStatus,
    PaymentStatus,
    ResolutionReason,
    ServiceStatus,
    as_utc,
)
from .notifications import NotificationDispatcher
from .store import BookingStore, clear_code, lock_booking, offers_for_booking, reopen_auto_rejected, resolve_offer, touch

logger = logging.getLogger(__name__)

# edges the assigned provider may take through set_status;
# arrived -> in_progress only happens through the verification gate
PROVIDER_TRANSITIONS = {
    ServiceStatus.ASSIGNED.value: {ServiceStatus.STARTED.value, ServiceStatus.EN_ROUTE.value},
    ServiceStatus.STARTED.value: {ServiceStatus.ARRIVED.value},
    ServiceStatus.EN_ROUTE.value: {ServiceStatus.ARRIVED.value},
    ServiceStatus.IN_PROGRESS.value: {ServiceStatus.COMPLETED.value},
}

CANCEL_ROLES = ("customer", "provider")

PAYMENT_CAPTURED = "payment.captured"
PAYMENT_REFUNDED = "payment.refunded"


class LifecycleController(BookingCommands):
    def __init__(
        self,
        store: BookingStore,
        dispatcher: NotificationDispatcher,
        chat_sessions: ChatSessions,
        *,
        cancellation_lead: timedelta = timedelta(hours=CANCELLATION_LEAD_HOURS),
    ):
        super().__init__(store, dispatcher)
        self.chat_sessions = chat_sessions
        self.cancellation_lead = cancellation_lead

    async def set_status(self, booking_id: str, acting_provider_id: str, target_status: str) -> Booking:
        valid = {s.value for s in ServiceStatus}
        if target_status not in valid:
            raise InvalidTransition(f"Unknown status {target_status}")
        if target_status == ServiceStatus.CANCELLED.value:
            return await self.cancel(booking_id, acting_provider_id, "provider")

        async def work(session, outbox, now):
            booking = await lock_booking(session, booking_id)
            if booking.provider_id != acting_provider_id:
                raise Forbidden("Booking is not assigned to this provider")

            current = booking.service_status
            if current == ServiceStatus.ARRIVED.value and target_status == ServiceStatus.IN_PROGRESS.value:
                raise InvalidTransition("Service can only start after the customer's code is verified")
            if target_status not in PROVIDER_TRANSITIONS.get(current, set()):
                raise InvalidTransition(f"Cannot move booking from {current} to {target_status}")

            booking.service_status = target_status
            if target_status == ServiceStatus.COMPLETED.value:
                booking.completed_at = now
            touch(booking, now)
            await session.flush()

            record_status_change(outbox, booking)
            return booking

        booking = await self._execute(work)
        logger.info("booking %s moved to %s by provider %s", booking.id, booking.service_status, acting_provider_id)

        if booking.service_status == ServiceStatus.COMPLETED.value:
            await self.end_ancillary_sessions(booking.id)
        return booking

    async def end_ancillary_sessions(self, booking_id: str) -> bool:
        """Best-effort chat cleanup; never raises."""
        try:
            await self.chat_sessions.end_session_for(booking_id)
            return True
        except Exception:
            logger.warning("chat teardown failed for booking %s", booking_id, exc_info=True)
            return False

    def _inside_lead_window(self, booking: Booking, now: datetime) -> bool:
        return as_utc(booking.scheduled_time) - now < self.cancellation_lead

    async def cancel(self, booking_id: str, acting_user_id: str, role: str, reason: str | None = None) -> Booking:
        if role not in CANCEL_ROLES:
            raise Forbidden(f"Role {role} cannot cancel bookings")

        async def work(session, outbox, now):
            booking = await lock_booking(session, booking_id)

            if role == "customer" and booking.customer_id != acting_user_id:
                raise Forbidden("Booking belongs to another customer")
            if role == "provider" and booking.provider_id != acting_user_id:
                raise Forbidden("Booking is not assigned to this provider")
            if booking.service_status in TERMINAL_STATUSES:
                raise InvalidTransition(f"Booking is already {booking.service_status}")
            if role == "provider" and self._inside_lead_window(booking, now):
                raise CancellationWindowViolated(
                    f"Providers cannot cancel within {self.cancellation_lead} of the scheduled time"
                )

            offers = await offers_for_booking(session, booking.id)
            for offer in offers:
                if offer.status == OfferStatus.ACCEPTED.value:
                    resolve_offer(offer, OfferStatus.REJECTED, ResolutionReason.BOOKING_CANCELLED, now)
            await reopen_auto_rejected(session, booking, now)

            booking.provider_id = None
            booking.service_status = ServiceStatus.CANCELLED.value
            booking.cancelled_at = now
            booking.cancelled_by = role
            booking.cancellation_reason = reason
            clear_code(booking)
            if booking.payment_status == PaymentStatus.PAID.value:
                booking.payment_status = PaymentStatus.REFUNDED.value
            touch(booking, now)
            await session.flush()

            payload = {**booking_payload(booking), "cancelled_by": role, "reason": reason}
            outbox.add(customer_channel(booking.customer_id), events.BOOKING_CANCELLED, payload)
            for provider_id in dict.fromkeys(o.provider_id for o in offers):
                outbox.add(provider_channel(provider_id), events.BOOKING_CANCELLED, payload)
            record_status_change(outbox, booking)
            return booking

        booking = await self._execute(work)
        logger.info("booking %s cancelled by %s %s", booking.id, role, acting_user_id)
        return booking

    async def apply_payment_event(self, booking_id: str, kind: str, occurred_at: datetime | None = None) -> Booking:
        """Record the payment gateway's asynchronous confirmation of a capture or refund."""

        async def work(session, outbox, now):
            booking = await lock_booking(session, booking_id)
            before = booking.payment_status

            if kind == PAYMENT_CAPTURED and before == PaymentStatus.PENDING.value:
                booking.paid_at = occurred_at or now
                # a capture landing after cancellation is owed straight back
                if booking.service_status == ServiceStatus.CANCELLED.value:
                    booking.payment_status = PaymentStatus.REFUNDED.value
                else:
                    booking.payment_status = PaymentStatus.PAID.value
            elif kind == PAYMENT_REFUNDED and before == PaymentStatus.PAID.value:
                booking.payment_status = PaymentStatus.REFUNDED.value

            if booking.payment_status == before:
                return booking

            touch(booking, now)
            await session.flush()
            outbox.add(
                customer_channel(booking.customer_id),
                events.PAYMENT_UPDATED,
                {"booking_id": booking.id, "payment_status": booking.payment_status},
            )
            return booking

        return await self._execute(work)
