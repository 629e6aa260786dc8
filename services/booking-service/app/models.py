import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from shared.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes even for timezone-aware columns."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BookingType(str, enum.Enum):
    RIDE = "ride"
    SERVICE = "service"


class ServiceStatus(str, enum.Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    STARTED = "started"
    EN_ROUTE = "en_route"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {ServiceStatus.COMPLETED.value, ServiceStatus.CANCELLED.value}


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class OfferStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ResolutionReason(str, enum.Enum):
    REJECTED_BY_PROVIDER = "rejected_by_provider"
    REJECTED_DUE_TO_OTHER_ACCEPTANCE = "rejected_due_to_other_acceptance"
    WITHDRAWN_BY_PROVIDER = "withdrawn_by_provider"
    BOOKING_CANCELLED = "booking_cancelled"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String, primary_key=True, default=new_id)

    customer_id = Column(String, nullable=False, index=True)
    provider_id = Column(String, nullable=True, index=True)

    booking_type = Column(String, nullable=False, default=BookingType.SERVICE.value)
    service_status = Column(String, nullable=False, index=True, default=ServiceStatus.PENDING.value)
    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING.value)

    scheduled_time = Column(DateTime(timezone=True), nullable=False)

    otp_code = Column(String(6), nullable=True)
    otp_expires_at = Column(DateTime(timezone=True), nullable=True)
    otp_attempts = Column(Integer, nullable=False, default=0)

    service_started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(String, nullable=True)  # customer/provider
    cancellation_reason = Column(String, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def otp_outstanding(self, now: datetime) -> bool:
        return bool(self.otp_code) and self.otp_expires_at is not None and as_utc(self.otp_expires_at) > now


class Offer(Base):
    __tablename__ = "booking_offers"
    __table_args__ = (UniqueConstraint("booking_id", "provider_id", name="uq_booking_offers_booking_provider"),)

    id = Column(String, primary_key=True, default=new_id)
    booking_id = Column(String, ForeignKey("bookings.id"), nullable=False, index=True)
    provider_id = Column(String, nullable=False, index=True)

    status = Column(String, nullable=False, index=True, default=OfferStatus.PENDING.value)
    resolution_reason = Column(String, nullable=True)

    requested_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    responded_at = Column(DateTime(timezone=True), nullable=True)
