from .events import EventOutbox
from .notifications import NotificationDispatcher, deliver
from .store import BookingStore


class BookingCommands:
    """
    Shared plumbing for components that mutate bookings: one transaction per
    call, events buffered while it runs and published after it commits.
    """

    def __init__(self, store: BookingStore, dispatcher: NotificationDispatcher):
        self.store = store
        self.dispatcher = dispatcher

    async def _execute(self, work):
        outbox = EventOutbox()

        async def attempt(session):
            # a retried attempt must not publish events recorded by the aborted one
            outbox.clear()
            return await work(session, outbox, self.store.now())

        result = await self.store.transact(attempt)
        await deliver(self.dispatcher, outbox)
        return result
