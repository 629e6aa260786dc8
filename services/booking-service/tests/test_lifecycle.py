import pytest

from booking_service.errors import CancellationWindowViolated, Forbidden, InvalidTransition
from booking_service.lifecycle import PAYMENT_CAPTURED, PAYMENT_REFUNDED
from booking_service.models import OfferStatus, ResolutionReason

pytestmark = pytest.mark.anyio


async def test_provider_walks_the_ride_path(lifecycle, book, dispatcher):
    booking_id, _ = await book(providers=["p1"], accepted_by="p1")
    dispatcher.reset()

    booking = await lifecycle.set_status(booking_id, "p1", "en_route")
    assert booking.service_status == "en_route"
    booking = await lifecycle.set_status(booking_id, "p1", "arrived")
    assert booking.service_status == "arrived"

    assert dispatcher.names("customer:cust-1") == ["driver_en_route", "driver_arrived"]
    assert dispatcher.names(f"booking:{booking_id}") == ["status_update", "status_update"]


async def test_started_is_an_alternative_first_step(lifecycle, book, dispatcher):
    booking_id, _ = await book(providers=["p1"], accepted_by="p1")

    await lifecycle.set_status(booking_id, "p1", "started")
    booking = await lifecycle.set_status(booking_id, "p1", "arrived")

    assert booking.service_status == "arrived"
    assert "provider_started" in dispatcher.names("customer:cust-1")


@pytest.mark.parametrize("target", ["arrived", "completed", "pending", "assigned"])
async def test_illegal_edges_from_assigned(lifecycle, book, target):
    booking_id, _ = await book(providers=["p1"], accepted_by="p1")

    with pytest.raises(InvalidTransition):
        await lifecycle.set_status(booking_id, "p1", target)


async def test_in_progress_cannot_be_set_directly(lifecycle, book, arrive):
    booking_id, _ = await book(providers=["p1"], accepted_by="p1")
    await arrive(booking_id, "p1")

    with pytest.raises(InvalidTransition):
        await lifecycle.set_status(booking_id, "p1", "in_progress")


async def test_unknown_status_is_rejected(lifecycle, book):
    booking_id, _ = await book(providers=["p1"], accepted_by="p1")

    with pytest.raises(InvalidTransition):
        await lifecycle.set_status(booking_id, "p1", "teleported")


async def test_only_the_assigned_provider_moves_the_booking(lifecycle, book):
    booking_id, _ = await book(providers=["p1", "p2"], accepted_by="p1")

    with pytest.raises(Forbidden):
        await lifecycle.set_status(booking_id, "p2", "en_route")


async def test_completion_ends_chat_and_is_final(lifecycle, gate, book, arrive, chat, store):
    booking_id, _ = await book(providers=["p1"], accepted_by="p1")
    await arrive(booking_id, "p1")
    issued = await gate.issue_code(booking_id, "p1")
    await gate.verify_code(booking_id, "p1", issued.code)

    booking = await lifecycle.set_status(booking_id, "p1", "completed")

    assert booking.service_status == "completed"
    assert booking.completed_at is not None
    assert chat.ended == [booking_id]

    with pytest.raises(InvalidTransition):
        await lifecycle.set_status(booking_id, "p1", "completed")
    assert chat.ended == [booking_id]


async def test_failing_chat_teardown_does_not_fail_completion(lifecycle, gate, book, arrive, chat, store):
    booking_id, _ = await book(providers=["p1"], accepted_by="p1")
    await arrive(booking_id, "p1")
    issued = await gate.issue_code(booking_id, "p1")
    await gate.verify_code(booking_id, "p1", issued.code)
    chat.error = RuntimeError("chat service down")

    booking = await lifecycle.set_status(booking_id, "p1", "completed")

    assert booking.service_status == "completed"
    assert (await store.get_booking(booking_id)).service_status == "completed"


async def test_end_ancillary_sessions_is_safe_to_repeat(lifecycle, chat):
    assert await lifecycle.end_ancillary_sessions("b-1") is True
    assert await lifecycle.end_ancillary_sessions("b-1") is True
    chat.error = RuntimeError("boom")
    assert await lifecycle.end_ancillary_sessions("b-1") is False


async def test_customer_cancel_releases_provider_and_offers(lifecycle, store, book, dispatcher):
    booking_id, offers = await book(providers=["p1", "p2"], accepted_by="p1")
    dispatcher.reset()

    booking = await lifecycle.cancel(booking_id, "cust-1", "customer", reason="plans changed")

    assert booking.service_status == "cancelled"
    assert booking.provider_id is None
    assert booking.cancelled_by == "customer"
    assert booking.cancellation_reason == "plans changed"

    ledger = {o.provider_id: o for o in await store.list_offers(booking_id)}
    assert ledger["p1"].status == OfferStatus.REJECTED.value
    assert ledger["p1"].resolution_reason == ResolutionReason.BOOKING_CANCELLED.value
    assert ledger["p2"].status == OfferStatus.PENDING.value

    assert "booking_cancelled" in dispatcher.names("customer:cust-1")
    assert dispatcher.names("provider:p1") == ["booking_cancelled"]
    assert dispatcher.names("provider:p2") == ["booking_cancelled"]


async def test_customer_may_cancel_close_to_the_scheduled_time(lifecycle, book):
    booking_id, _ = await book(providers=["p1"], accepted_by="p1", hours_ahead=1)

    booking = await lifecycle.cancel(booking_id, "cust-1", "customer")

    assert booking.service_status == "cancelled"


async def test_provider_cannot_cancel_inside_the_lead_window(lifecycle, book, store):
    booking_id, _ = await book(providers=["p1"], accepted_by="p1", hours_ahead=1)

    with pytest.raises(CancellationWindowViolated):
        await lifecycle.cancel(booking_id, "p1", "provider")
    assert (await store.get_booking(booking_id)).service_status == "assigned"


async def test_provider_cancel_through_set_status(lifecycle, book):
    booking_id, _ = await book(providers=["p1"], accepted_by="p1", hours_ahead=48)

    booking = await lifecycle.set_status(booking_id, "p1", "cancelled")

    assert booking.service_status == "cancelled"
    assert booking.cancelled_by == "provider"


async def test_cancel_checks_the_caller(lifecycle, book):
    booking_id, _ = await book(providers=["p1"], accepted_by="p1")

    with pytest.raises(Forbidden):
        await lifecycle.cancel(booking_id, "someone-else", "customer")
    with pytest.raises(Forbidden):
        await lifecycle.cancel(booking_id, "p2", "provider")
    with pytest.raises(Forbidden):
        await lifecycle.cancel(booking_id, "cust-1", "admin")


async def test_cancelled_booking_stays_cancelled(lifecycle, book):
    booking_id, _ = await book()
    await lifecycle.cancel(booking_id, "cust-1", "customer")

    with pytest.raises(InvalidTransition):
        await lifecycle.cancel(booking_id, "cust-1", "customer")


async def test_payment_capture_then_cancel_refunds(lifecycle, book, dispatcher):
    booking_id, _ = await book(providers=["p1"], accepted_by="p1")

    booking = await lifecycle.apply_payment_event(booking_id, PAYMENT_CAPTURED)
    assert booking.payment_status == "paid"
    assert booking.paid_at is not None
    assert dispatcher.names("customer:cust-1")[-1] == "payment_updated"

    booking = await lifecycle.cancel(booking_id, "cust-1", "customer")
    assert booking.payment_status == "refunded"


async def test_repeated_payment_event_is_a_no_op(lifecycle, book, dispatcher):
    booking_id, _ = await book()
    await lifecycle.apply_payment_event(booking_id, PAYMENT_CAPTURED)
    dispatcher.reset()

    booking = await lifecycle.apply_payment_event(booking_id, PAYMENT_CAPTURED)

    assert booking.payment_status == "paid"
    assert dispatcher.published == []


async def test_refund_requires_a_captured_payment(lifecycle, book):
    booking_id, _ = await book()

    booking = await lifecycle.apply_payment_event(booking_id, PAYMENT_REFUNDED)

    assert booking.payment_status == "pending"


async def test_capture_after_cancel_is_marked_for_refund(lifecycle, book, dispatcher):
    booking_id, _ = await book(providers=["p1"])
    await lifecycle.cancel(booking_id, "cust-1", "customer")
    dispatcher.reset()

    booking = await lifecycle.apply_payment_event(booking_id, PAYMENT_CAPTURED)

    assert booking.service_status == "cancelled"
    assert booking.payment_status == "refunded"
    assert booking.paid_at is not None
    assert dispatcher.published[-1][1:] == ("payment_updated", {"booking_id": booking_id, "payment_status": "refunded"})
