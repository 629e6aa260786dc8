from dataclasses import dataclass

from .arbiter import AssignmentArbiter
from .clients import ChatSessions, CustomerDirectory, VerificationMessenger
from .lifecycle import LifecycleController
from .notifications import NotificationDispatcher
from .store import BookingStore
from .verification import VerificationGate


@dataclass
class EngineServices:
    store: BookingStore
    arbiter: AssignmentArbiter
    lifecycle: LifecycleController
    verification: VerificationGate
    dispatcher: NotificationDispatcher


def build_services(
    store: BookingStore,
    dispatcher: NotificationDispatcher,
    directory: CustomerDirectory,
    messenger: VerificationMessenger,
    chat_sessions: ChatSessions,
    **gate_options,
) -> EngineServices:
    return EngineServices(
        store=store,
        arbiter=AssignmentArbiter(store, dispatcher),
        lifecycle=LifecycleController(store, dispatcher, chat_sessions),
        verification=VerificationGate(store, dispatcher, directory, messenger, **gate_options),
        dispatcher=dispatcher,
    )
