import logging
from dataclasses import dataclass, field

from . import events
from .commands import BookingCommands
from .errors import AlreadyResolved, Forbidden, InvalidTransition, LostRace
from .events import booking_payload, customer_channel, offer_payload, provider_channel, booking_channel
from .models import Booking, Offer, OfferStatus, ResolutionReason, ServiceStatus
from .store import (
    add_offers,
    lock_booking,
    lock_offer,
    reject_pending_siblings,
    reopen_auto_rejected,
    resolve_offer,
    touch,
)

logger = logging.getLogger(__name__)


@dataclass
class OfferResolution:
    booking: Booking
    offer: Offer
    # siblings closed by an acceptance or re-opened by a withdrawal
    affected: list[Offer] = field(default_factory=list)


class AssignmentArbiter(BookingCommands):
    """
    Resolves providers' answers to booking offers so that at most one
    provider is ever assigned to a booking.
    """

    async def open_offers(self, booking_id: str, provider_ids: list[str]) -> list[Offer]:
        async def work(session, outbox, now):
            booking = await lock_booking(session, booking_id)
            if booking.service_status != ServiceStatus.PENDING.value:
                raise InvalidTransition(f"Cannot offer a booking in status {booking.service_status}")

            created = await add_offers(session, booking, provider_ids, now)
            for offer in created:
                outbox.add(
                    provider_channel(offer.provider_id),
                    events.OFFER_CREATED,
                    {**offer_payload(offer), "booking": booking_payload(booking)},
                )
            return created

        created = await self._execute(work)
        logger.info("opened %d offers for booking %s", len(created), booking_id)
        return created

    async def accept_offer(self, offer_id: str, acting_provider_id: str) -> OfferResolution:
        async def work(session, outbox, now):
            booking, offer = await lock_offer(session, offer_id)

            if offer.provider_id != acting_provider_id:
                raise Forbidden("Offer belongs to another provider")
            if booking.provider_id is not None and booking.provider_id != acting_provider_id:
                raise LostRace("Booking was already accepted by another provider")
            if offer.status != OfferStatus.PENDING.value:
                raise AlreadyResolved(f"Offer is already {offer.status}")
            if booking.service_status != ServiceStatus.PENDING.value:
                raise InvalidTransition(f"Cannot accept a booking in status {booking.service_status}")

            resolve_offer(offer, OfferStatus.ACCEPTED, None, now)
            booking.provider_id = acting_provider_id
            booking.service_status = ServiceStatus.ASSIGNED.value
            losers = await reject_pending_siblings(session, booking, offer, now)
            await session.flush()

            outbox.add(provider_channel(acting_provider_id), events.OFFER_ACCEPTED, offer_payload(offer))
            for loser in losers:
                outbox.add(provider_channel(loser.provider_id), events.OFFER_REJECTED, offer_payload(loser))
            outbox.add(customer_channel(booking.customer_id), events.BOOKING_ASSIGNED, booking_payload(booking))
            outbox.add(
                booking_channel(booking.id),
                events.STATUS_UPDATE,
                {"booking_id": booking.id, "status": booking.service_status},
            )
            return OfferResolution(booking, offer, losers)

        result = await self._execute(work)
        logger.info(
            "booking %s assigned to provider %s, %d competing offers closed",
            result.booking.id,
            acting_provider_id,
            len(result.affected),
        )
        return result

    async def reject_offer(self, offer_id: str, acting_provider_id: str) -> OfferResolution:
        async def work(session, outbox, now):
            booking, offer = await lock_offer(session, offer_id)

            if offer.provider_id != acting_provider_id:
                raise Forbidden("Offer belongs to another provider")
            if offer.status != OfferStatus.PENDING.value:
                raise AlreadyResolved(f"Offer is already {offer.status}")

            resolve_offer(offer, OfferStatus.REJECTED, ResolutionReason.REJECTED_BY_PROVIDER, now)
            touch(booking, now)
            await session.flush()

            outbox.add(provider_channel(acting_provider_id), events.OFFER_UPDATED, offer_payload(offer))
            return OfferResolution(booking, offer)

        return await self._execute(work)

    async def withdraw_accepted_offer(self, offer_id: str, acting_provider_id: str) -> OfferResolution:
        async def work(session, outbox, now):
            booking, offer = await lock_offer(session, offer_id)

            if offer.provider_id != acting_provider_id:
                raise Forbidden("Offer belongs to another provider")
            if offer.status != OfferStatus.ACCEPTED.value:
                raise InvalidTransition(f"Only an accepted offer can be withdrawn, offer is {offer.status}")
            if booking.provider_id != acting_provider_id or booking.service_status != ServiceStatus.ASSIGNED.value:
                raise InvalidTransition(f"Cannot withdraw from a booking in status {booking.service_status}")

            resolve_offer(offer, OfferStatus.REJECTED, ResolutionReason.WITHDRAWN_BY_PROVIDER, now)
            booking.provider_id = None
            booking.service_status = ServiceStatus.PENDING.value
            reopened = await reopen_auto_rejected(session, booking, now)
            await session.flush()

            outbox.add(provider_channel(acting_provider_id), events.OFFER_UPDATED, offer_payload(offer))
            for o in reopened:
                outbox.add(
                    provider_channel(o.provider_id),
                    events.OFFER_REOPENED,
                    {**offer_payload(o), "booking": booking_payload(booking)},
                )
            outbox.add(customer_channel(booking.customer_id), events.BOOKING_UNASSIGNED, booking_payload(booking))
            outbox.add(
                booking_channel(booking.id),
                events.STATUS_UPDATE,
                {"booking_id": booking.id, "status": booking.service_status},
            )
            return OfferResolution(booking, offer, reopened)

        result = await self._execute(work)
        logger.info(
            "provider %s withdrew from booking %s, %d offers re-opened",
            acting_provider_id,
            result.booking.id,
            len(result.affected),
        )
        return result
