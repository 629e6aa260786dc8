from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List

from .models import BookingType


class CreateBookingRequest(BaseModel):
    scheduled_time: datetime
    booking_type: BookingType = BookingType.SERVICE


class OpenOffersRequest(BaseModel):
    provider_ids: List[str] = Field(min_length=1)


class SetStatusRequest(BaseModel):
    status: str


class CancelRequest(BaseModel):
    reason: str | None = None


class VerifyCodeRequest(BaseModel):
    code: str


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    provider_id: str | None = None
    booking_type: str
    service_status: str
    payment_status: str
    scheduled_time: datetime
    service_started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    created_at: datetime
    updated_at: datetime


class OfferResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    booking_id: str
    provider_id: str
    status: str
    resolution_reason: str | None = None
    requested_at: datetime
    responded_at: datetime | None = None


class OfferResolutionResponse(BaseModel):
    booking: BookingResponse
    offer: OfferResponse
    affected_offers: List[OfferResponse] = []


class OpenOffersResponse(BaseModel):
    booking_id: str
    offers: List[OfferResponse]


class CodeIssuedResponse(BaseModel):
    booking_id: str
    expires_at: datetime


class CodeStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: str
    service_status: str
    has_code: bool
    valid: bool
    expires_at: datetime | None = None
    attempts_remaining: int
