import hmac
import logging
import math
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from . import events
from .clients import CustomerDirectory, VerificationMessenger
from .commands import BookingCommands
from .config import OTP_MAX_ATTEMPTS, OTP_TTL_MINUTES
from .errors import (
    AttemptsExhausted,
    CodeDeliveryFailed,
    CodeExpired,
    CodeMismatch,
    ContactUnavailable,
    Forbidden,
    InvalidTransition,
    MalformedCode,
    Throttled,
)
from .events import EventOutbox, customer_channel, record_status_change
from .models import Booking, ServiceStatus, as_utc
from .notifications import NotificationDispatcher, deliver
from .store import BookingStore, clear_code, lock_booking, touch

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"^[0-9]{6}$")

# verify outcome for a code that outlived its ttl
_EXPIRED = object()


def generate_code() -> str:
    # uniform over 100000..999999
    return str(100000 + secrets.randbelow(900000))


@dataclass
class IssuedCode:
    booking_id: str
    code: str
    expires_at: datetime


@dataclass
class CodeStatus:
    booking_id: str
    service_status: str
    has_code: bool
    valid: bool
    expires_at: datetime | None
    attempts_remaining: int


def _ensure_provider(booking: Booking, acting_provider_id: str):
    if booking.provider_id != acting_provider_id:
        raise Forbidden("Booking is not assigned to this provider")


def _ensure_arrived(booking: Booking):
    if booking.service_status != ServiceStatus.ARRIVED.value:
        raise InvalidTransition(
            f"Verification is only possible once the provider has arrived, booking is {booking.service_status}"
        )


class VerificationGate(BookingCommands):
    """
    One-time code relayed to the customer out of band and read back by the
    provider on site. A verified code moves the booking from arrived to
    in_progress.
    """

    def __init__(
        self,
        store: BookingStore,
        dispatcher: NotificationDispatcher,
        directory: CustomerDirectory,
        messenger: VerificationMessenger,
        *,
        ttl: timedelta = timedelta(minutes=OTP_TTL_MINUTES),
        max_attempts: int = OTP_MAX_ATTEMPTS,
        code_factory=generate_code,
    ):
        super().__init__(store, dispatcher)
        self.directory = directory
        self.messenger = messenger
        self.ttl = ttl
        self.max_attempts = max_attempts
        self.code_factory = code_factory

    async def issue_code(self, booking_id: str, acting_provider_id: str) -> IssuedCode:
        booking = await self.store.get_booking(booking_id)
        _ensure_provider(booking, acting_provider_id)
        _ensure_arrived(booking)

        contact = await self.directory.contact_for(booking.customer_id)
        if not contact:
            raise ContactUnavailable()

        code = self.code_factory()

        async def work(session, outbox, now):
            booking = await lock_booking(session, booking_id)
            _ensure_provider(booking, acting_provider_id)
            _ensure_arrived(booking)
            if booking.otp_outstanding(now):
                retry_after = math.ceil((as_utc(booking.otp_expires_at) - now).total_seconds())
                raise Throttled(retry_after)

            booking.otp_code = code
            booking.otp_expires_at = now + self.ttl
            booking.otp_attempts = 0
            touch(booking, now)
            await session.flush()
            return booking

        booking = await self._execute(work)
        expires_at = as_utc(booking.otp_expires_at)
        context = {
            "booking_id": booking.id,
            "booking_type": booking.booking_type,
            "expires_at": expires_at.isoformat(),
            "ttl_minutes": int(self.ttl.total_seconds() // 60),
        }

        delivered = False
        try:
            delivered = await self.messenger.send_verification_code(contact, code, context)
        except Exception:
            logger.exception("verification messenger raised for booking %s", booking_id)

        if not delivered:
            await self._revoke(booking_id, code)
            raise CodeDeliveryFailed()

        outbox = EventOutbox()
        outbox.add(
            customer_channel(booking.customer_id),
            events.VERIFICATION_CODE_SENT,
            {"booking_id": booking.id, "expires_at": expires_at},
        )
        await deliver(self.dispatcher, outbox)
        logger.info("verification code issued for booking %s, expires %s", booking.id, expires_at.isoformat())
        return IssuedCode(booking.id, code, expires_at)

    async def _revoke(self, booking_id: str, code: str):
        async def work(session, outbox, now):
            booking = await lock_booking(session, booking_id)
            # a newer code may have been issued in between
            if booking.otp_code == code:
                clear_code(booking)
                touch(booking, now)

        await self._execute(work)
        logger.warning("verification code for booking %s revoked after failed delivery", booking_id)

    async def verify_code(self, booking_id: str, acting_provider_id: str, supplied_code: str) -> Booking:
        if not isinstance(supplied_code, str) or not CODE_PATTERN.match(supplied_code):
            raise MalformedCode()

        async def work(session, outbox, now):
            booking = await lock_booking(session, booking_id)
            _ensure_provider(booking, acting_provider_id)

            if not booking.otp_code:
                raise CodeExpired("No verification code is active, request a new one")
            _ensure_arrived(booking)
            if as_utc(booking.otp_expires_at) <= now:
                clear_code(booking)
                touch(booking, now)
                await session.flush()
                return booking, _EXPIRED

            if not hmac.compare_digest(booking.otp_code, supplied_code):
                booking.otp_attempts = (booking.otp_attempts or 0) + 1
                remaining = self.max_attempts - booking.otp_attempts
                if remaining <= 0:
                    clear_code(booking)
                touch(booking, now)
                await session.flush()
                return booking, remaining

            clear_code(booking)
            booking.service_status = ServiceStatus.IN_PROGRESS.value
            booking.service_started_at = now
            touch(booking, now)
            await session.flush()

            record_status_change(outbox, booking)
            return booking, None

        booking, remaining = await self._execute(work)
        if remaining is _EXPIRED:
            raise CodeExpired()
        if remaining is not None:
            if remaining <= 0:
                logger.warning("verification attempts exhausted for booking %s", booking_id)
                raise AttemptsExhausted()
            raise CodeMismatch(remaining)

        logger.info("booking %s verified, service in progress", booking.id)
        return booking

    async def code_status(self, booking_id: str, acting_user_id: str) -> CodeStatus:
        booking = await self.store.get_booking(booking_id)
        if acting_user_id not in (booking.customer_id, booking.provider_id):
            raise Forbidden("Not a party to this booking")

        now = self.store.now()
        has_code = bool(booking.otp_code)
        return CodeStatus(
            booking_id=booking.id,
            service_status=booking.service_status,
            has_code=has_code,
            valid=booking.otp_outstanding(now),
            expires_at=as_utc(booking.otp_expires_at),
            attempts_remaining=max(self.max_attempts - (booking.otp_attempts or 0), 0) if has_code else 0,
        )
