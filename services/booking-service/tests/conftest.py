from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

from shared.database import Base, get_engine, get_session
from booking_service import models  # noqa: F401  registers the tables on Base
from booking_service.arbiter import AssignmentArbiter
from booking_service.lifecycle import LifecycleController
from booking_service.services import build_services
from booking_service.store import BookingStore
from booking_service.verification import VerificationGate


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingDispatcher:
    def __init__(self):
        self.published = []
        self.fail_on = set()

    async def publish(self, channel, event_name, payload):
        if event_name in self.fail_on:
            raise RuntimeError("broker unavailable")
        self.published.append((channel, event_name, payload))

    def names(self, channel=None):
        return [name for ch, name, _ in self.published if channel is None or ch == channel]

    def reset(self):
        self.published.clear()


class StaticDirectory:
    def __init__(self, contacts=None):
        self.contacts = dict(contacts or {})

    async def contact_for(self, customer_id):
        return self.contacts.get(customer_id)


class RecordingMessenger:
    def __init__(self):
        self.sent = []
        self.succeed = True
        self.error = None

    async def send_verification_code(self, contact, code, context):
        if self.error is not None:
            raise self.error
        self.sent.append((contact, code, context))
        return self.succeed


class RecordingChat:
    def __init__(self):
        self.ended = []
        self.error = None

    async def end_session_for(self, booking_id):
        self.ended.append(booking_id)
        if self.error is not None:
            raise self.error


class FakeRedis:
    def __init__(self):
        self.data = {}

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def database_url(tmp_path):
    path = tmp_path / "bookings.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    return f"sqlite+aiosqlite:///{path}"


@pytest.fixture
def session_factory(database_url):
    engine = get_engine(database_url, poolclass=NullPool)
    return get_session(engine)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def directory():
    return StaticDirectory({"cust-1": "cust-1@example.com"})


@pytest.fixture
def messenger():
    return RecordingMessenger()


@pytest.fixture
def chat():
    return RecordingChat()


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def store(session_factory, clock):
    return BookingStore(session_factory, max_retries=10, clock=clock)


@pytest.fixture
def arbiter(store, dispatcher):
    return AssignmentArbiter(store, dispatcher)


@pytest.fixture
def lifecycle(store, dispatcher, chat):
    return LifecycleController(store, dispatcher, chat)


@pytest.fixture
def gate(store, dispatcher, directory, messenger):
    return VerificationGate(
        store,
        dispatcher,
        directory,
        messenger,
        ttl=timedelta(minutes=15),
        max_attempts=5,
        code_factory=lambda: "482913",
    )


@pytest.fixture
def services(store, dispatcher, directory, messenger, chat):
    return build_services(
        store=store,
        dispatcher=dispatcher,
        directory=directory,
        messenger=messenger,
        chat_sessions=chat,
        ttl=timedelta(minutes=15),
        code_factory=lambda: "482913",
    )


@pytest.fixture
def book(store, arbiter, clock):
    """
    Create a booking, optionally offer it and have one provider accept.
    Returns (booking_id, {provider_id: offer_id}).
    """

    async def _book(customer_id="cust-1", providers=(), accepted_by=None, hours_ahead=24):
        booking = await store.create_booking(customer_id, clock.now + timedelta(hours=hours_ahead))
        offers = {}
        if providers:
            created = await arbiter.open_offers(booking.id, list(providers))
            offers = {o.provider_id: o.id for o in created}
        if accepted_by:
            await arbiter.accept_offer(offers[accepted_by], accepted_by)
        return booking.id, offers

    return _book


@pytest.fixture
def arrive(lifecycle):
    async def _arrive(booking_id, provider_id):
        await lifecycle.set_status(booking_id, provider_id, "en_route")
        return await lifecycle.set_status(booking_id, provider_id, "arrived")

    return _arrive
