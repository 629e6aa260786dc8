import pytest
from sqlalchemy.orm.exc import StaleDataError

from booking_service.events import EventOutbox, to_json
from booking_service.notifications import RabbitNotificationDispatcher, deliver, routing_key_for

pytestmark = pytest.mark.anyio


def test_routing_key_for_channel():
    assert routing_key_for("provider:p1", "offer_created") == "provider.p1.offer_created"
    assert routing_key_for("booking:b1", "status_update") == "booking.b1.status_update"


def test_to_json_serializes_datetimes(clock):
    body = to_json({"data": {"at": clock.now}})
    assert '"2026-03-02T09:00:00+00:00"' in body


async def test_deliver_keeps_order_and_skips_failures(dispatcher):
    outbox = EventOutbox()
    outbox.add("customer:c1", "booking_assigned", {"n": 1})
    outbox.add("provider:p1", "offer_rejected", {"n": 2})
    outbox.add("booking:b1", "status_update", {"n": 3})
    dispatcher.fail_on.add("offer_rejected")

    delivered = await deliver(dispatcher, outbox)

    assert delivered == 2
    assert dispatcher.names() == ["booking_assigned", "status_update"]


async def test_dispatcher_without_broker_is_a_no_op():
    dispatcher = RabbitNotificationDispatcher(None)

    await dispatcher.connect()
    await dispatcher.publish("customer:c1", "booking_assigned", {})
    await dispatcher.close()

    assert dispatcher.enabled is False


async def test_retried_transaction_publishes_only_the_final_attempt(store, arbiter, dispatcher, book, monkeypatch):
    booking_id, offers = await book(providers=["p1", "p2"])
    dispatcher.reset()

    real_transact = store.transact
    calls = {"n": 0}

    async def flaky(work):
        async def once_stale(session):
            result = await work(session)
            calls["n"] += 1
            if calls["n"] == 1:
                raise StaleDataError("simulated concurrent update")
            return result

        return await real_transact(once_stale)

    monkeypatch.setattr(store, "transact", flaky)

    await arbiter.accept_offer(offers["p1"], "p1")

    assert calls["n"] == 2
    assert dispatcher.names() == ["offer_accepted", "offer_rejected", "booking_assigned", "status_update"]
