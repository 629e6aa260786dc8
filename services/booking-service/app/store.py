"""
Booking Store and Offer Ledger.

This is the only module that writes `bookings` and `booking_offers` rows.
Helpers that take a session are meant to be called from inside
`BookingStore.transact`; every helper that changes an offer also touches its
booking so the booking's version check covers the whole ledger.
"""
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database import RetryableConflict, run_in_transaction
from .config import TX_MAX_RETRIES
from .errors import ConcurrentUpdate, NotFound
from .models import (
    Booking,
    BookingType,
    Offer,
    OfferStatus,
    PaymentStatus,
    ResolutionReason,
    ServiceStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


class BookingStore:
    def __init__(self, session_factory, *, max_retries: int = TX_MAX_RETRIES, clock=utcnow):
        self.session_factory = session_factory
        self.max_retries = max_retries
        self.clock = clock

    def now(self) -> datetime:
        return self.clock()

    async def transact(self, work):
        try:
            return await run_in_transaction(self.session_factory, work, retries=self.max_retries)
        except RetryableConflict as e:
            logger.warning("giving up on contended booking transaction: %s", e)
            raise ConcurrentUpdate() from e

    async def create_booking(
        self,
        customer_id: str,
        scheduled_time: datetime,
        booking_type: str = BookingType.SERVICE.value,
    ) -> Booking:
        async def work(session: AsyncSession):
            now = self.now()
            booking = Booking(
                customer_id=customer_id,
                provider_id=None,
                booking_type=BookingType(booking_type).value,
                service_status=ServiceStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                scheduled_time=scheduled_time,
                otp_attempts=0,
                created_at=now,
                updated_at=now,
            )
            session.add(booking)
            await session.flush()
            return booking

        return await self.transact(work)

    async def get_booking(self, booking_id: str) -> Booking:
        async with self.session_factory() as session:
            booking = await session.get(Booking, booking_id)
            if booking is None:
                raise NotFound(f"Booking {booking_id} not found")
            return booking

    async def list_offers(self, booking_id: str) -> list[Offer]:
        async with self.session_factory() as session:
            return await offers_for_booking(session, booking_id)

    async def list_provider_offers(self, provider_id: str, status: str | None = None) -> list[Offer]:
        async with self.session_factory() as session:
            stmt = select(Offer).where(Offer.provider_id == provider_id)
            if status:
                stmt = stmt.where(Offer.status == status)
            res = await session.execute(stmt.order_by(Offer.requested_at.desc()))
            return list(res.scalars().all())


# ---- in-transaction helpers ----

async def lock_booking(session: AsyncSession, booking_id: str) -> Booking:
    res = await session.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    booking = res.scalar_one_or_none()
    if booking is None:
        raise NotFound(f"Booking {booking_id} not found")
    return booking


async def lock_offer(session: AsyncSession, offer_id: str) -> tuple[Booking, Offer]:
    """
    Lock the offer's booking row, then re-read the offer under that lock.
    """
    offer = await session.get(Offer, offer_id)
    if offer is None:
        raise NotFound(f"Offer {offer_id} not found")

    booking = await lock_booking(session, offer.booking_id)
    res = await session.execute(
        select(Offer).where(Offer.id == offer_id).execution_options(populate_existing=True)
    )
    return booking, res.scalar_one()


async def offers_for_booking(session: AsyncSession, booking_id: str) -> list[Offer]:
    res = await session.execute(
        select(Offer).where(Offer.booking_id == booking_id).order_by(Offer.requested_at, Offer.id)
    )
    return list(res.scalars().all())


def touch(booking: Booking, now: datetime):
    booking.updated_at = now


def resolve_offer(offer: Offer, status: OfferStatus, reason: ResolutionReason | None, now: datetime | None):
    offer.status = status.value
    offer.resolution_reason = reason.value if reason else None
    offer.responded_at = now


async def add_offers(session: AsyncSession, booking: Booking, provider_ids: list[str], now: datetime) -> list[Offer]:
    existing = {o.provider_id for o in await offers_for_booking(session, booking.id)}
    created = []
    for provider_id in provider_ids:
        if provider_id in existing or provider_id == booking.customer_id:
            continue
        existing.add(provider_id)
        offer = Offer(
            booking_id=booking.id,
            provider_id=provider_id,
            status=OfferStatus.PENDING.value,
            requested_at=now,
        )
        session.add(offer)
        created.append(offer)
    if created:
        touch(booking, now)
        await session.flush()
    return created


async def reject_pending_siblings(session: AsyncSession, booking: Booking, winner: Offer, now: datetime) -> list[Offer]:
    losers = []
    for offer in await offers_for_booking(session, booking.id):
        if offer.id == winner.id or offer.status != OfferStatus.PENDING.value:
            continue
        resolve_offer(offer, OfferStatus.REJECTED, ResolutionReason.REJECTED_DUE_TO_OTHER_ACCEPTANCE, now)
        losers.append(offer)
    touch(booking, now)
    return losers


async def reopen_auto_rejected(session: AsyncSession, booking: Booking, now: datetime) -> list[Offer]:
    """
    Put back to pending exactly the offers that were closed by the booking's
    last acceptance. Offers a provider declined on their own stay rejected.
    """
    res = await session.execute(
        select(Offer).where(
            Offer.booking_id == booking.id,
            Offer.status == OfferStatus.REJECTED.value,
            Offer.resolution_reason == ResolutionReason.REJECTED_DUE_TO_OTHER_ACCEPTANCE.value,
        )
    )
    reopened = list(res.scalars().all())
    for offer in reopened:
        resolve_offer(offer, OfferStatus.PENDING, None, None)
    touch(booking, now)
    return reopened


def clear_code(booking: Booking):
    booking.otp_code = None
    booking.otp_expires_at = None
    booking.otp_attempts = 0
