from fastapi import APIRouter, Depends, Query, Request

from .errors import Forbidden
from .identity import ADMIN, CUSTOMER, PROVIDER, Actor, get_actor, require_role
from .models import as_utc
from .schemas import (
    BookingResponse,
    CancelRequest,
    CodeIssuedResponse,
    CodeStatusResponse,
    CreateBookingRequest,
    OfferResolutionResponse,
    OfferResponse,
    OpenOffersRequest,
    OpenOffersResponse,
    SetStatusRequest,
    VerifyCodeRequest,
)
from .services import EngineServices

router = APIRouter()


def get_services(request: Request) -> EngineServices:
    return request.app.state.services


def _resolution_response(resolution) -> OfferResolutionResponse:
    return OfferResolutionResponse(
        booking=BookingResponse.model_validate(resolution.booking),
        offer=OfferResponse.model_validate(resolution.offer),
        affected_offers=[OfferResponse.model_validate(o) for o in resolution.affected],
    )


@router.post("/bookings", response_model=BookingResponse, status_code=201)
async def create_booking(
    data: CreateBookingRequest,
    actor: Actor = Depends(get_actor),
    services: EngineServices = Depends(get_services),
):
    require_role(actor, [CUSTOMER])
    booking = await services.store.create_booking(
        customer_id=actor.user_id,
        scheduled_time=as_utc(data.scheduled_time),
        booking_type=data.booking_type.value,
    )
    return BookingResponse.model_validate(booking)


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    services: EngineServices = Depends(get_services),
):
    booking = await services.store.get_booking(booking_id)
    if actor.has_role(ADMIN) or actor.user_id in (booking.customer_id, booking.provider_id):
        return BookingResponse.model_validate(booking)

    offers = await services.store.list_offers(booking_id)
    if any(o.provider_id == actor.user_id for o in offers):
        return BookingResponse.model_validate(booking)
    raise Forbidden("Not a party to this booking")


@router.post("/bookings/{booking_id}/offers", response_model=OpenOffersResponse, status_code=201)
async def open_offers(
    booking_id: str,
    data: OpenOffersRequest,
    actor: Actor = Depends(get_actor),
    services: EngineServices = Depends(get_services),
):
    require_role(actor, [ADMIN])
    created = await services.arbiter.open_offers(booking_id, data.provider_ids)
    return OpenOffersResponse(
        booking_id=booking_id,
        offers=[OfferResponse.model_validate(o) for o in created],
    )


@router.get("/bookings/{booking_id}/offers", response_model=list[OfferResponse])
async def list_booking_offers(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    services: EngineServices = Depends(get_services),
):
    booking = await services.store.get_booking(booking_id)
    if not actor.has_role(ADMIN) and booking.customer_id != actor.user_id:
        raise Forbidden("Booking belongs to another customer")

    offers = await services.store.list_offers(booking_id)
    return [OfferResponse.model_validate(o) for o in offers]


@router.get("/providers/me/offers", response_model=list[OfferResponse])
async def list_my_offers(
    status: str | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    services: EngineServices = Depends(get_services),
):
    require_role(actor, [PROVIDER])
    offers = await services.store.list_provider_offers(actor.user_id, status)
    return [OfferResponse.model_validate(o) for o in offers]


@router.post("/offers/{offer_id}/accept", response_model=OfferResolutionResponse)
async def accept_offer(
    offer_id: str,
    actor: Actor = Depends(get_actor),
    services: EngineServices = Depends(get_services),
):
    require_role(actor, [PROVIDER])
    return _resolution_response(await services.arbiter.accept_offer(offer_id, actor.user_id))


@router.post("/offers/{offer_id}/reject", response_model=OfferResolutionResponse)
async def reject_offer(
    offer_id: str,
    actor: Actor = Depends(get_actor),
    services: EngineServices = Depends(get_services),
):
    require_role(actor, [PROVIDER])
    return _resolution_response(await services.arbiter.reject_offer(offer_id, actor.user_id))


@router.post("/offers/{offer_id}/withdraw", response_model=OfferResolutionResponse)
async def withdraw_offer(
    offer_id: str,
    actor: Actor = Depends(get_actor),
    services: EngineServices = Depends(get_services),
):
    require_role(actor, [PROVIDER])
    return _resolution_response(await services.arbiter.withdraw_accepted_offer(offer_id, actor.user_id))


@router.put("/bookings/{booking_id}/status", response_model=BookingResponse)
async def set_status(
    booking_id: str,
    data: SetStatusRequest,
    actor: Actor = Depends(get_actor),
    services: EngineServices = Depends(get_services),
):
    require_role(actor, [PROVIDER])
    booking = await services.lifecycle.set_status(booking_id, actor.user_id, data.status)
    return BookingResponse.model_validate(booking)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    data: CancelRequest | None = None,
    actor: Actor = Depends(get_actor),
    services: EngineServices = Depends(get_services),
):
    require_role(actor, [CUSTOMER, PROVIDER])
    booking = await services.store.get_booking(booking_id)
    # a user holding both roles cancels as the customer of their own booking
    if actor.has_role(CUSTOMER) and booking.customer_id == actor.user_id:
        role = "customer"
    elif actor.has_role(PROVIDER):
        role = "provider"
    else:
        role = "customer"

    reason = data.reason if data else None
    booking = await services.lifecycle.cancel(booking_id, actor.user_id, role, reason)
    return BookingResponse.model_validate(booking)


@router.post("/bookings/{booking_id}/verification-code", response_model=CodeIssuedResponse, status_code=201)
async def issue_verification_code(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    services: EngineServices = Depends(get_services),
):
    require_role(actor, [PROVIDER])
    issued = await services.verification.issue_code(booking_id, actor.user_id)
    # the code itself only travels to the customer
    return CodeIssuedResponse(booking_id=issued.booking_id, expires_at=issued.expires_at)


@router.post("/bookings/{booking_id}/verification-code/verify", response_model=BookingResponse)
async def verify_code(
    booking_id: str,
    data: VerifyCodeRequest,
    actor: Actor = Depends(get_actor),
    services: EngineServices = Depends(get_services),
):
    require_role(actor, [PROVIDER])
    booking = await services.verification.verify_code(booking_id, actor.user_id, data.code)
    return BookingResponse.model_validate(booking)


@router.get("/bookings/{booking_id}/verification-code", response_model=CodeStatusResponse)
async def verification_code_status(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    services: EngineServices = Depends(get_services),
):
    require_role(actor, [CUSTOMER, PROVIDER])
    status = await services.verification.code_status(booking_id, actor.user_id)
    return CodeStatusResponse.model_validate(status)
