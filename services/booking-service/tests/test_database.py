import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from shared.database import RetryableConflict, is_retryable_lock_error, run_in_transaction
from booking_service.errors import ConcurrentUpdate

pytestmark = pytest.mark.anyio


class _PgError(Exception):
    def __init__(self, pgcode):
        super().__init__("driver error")
        self.pgcode = pgcode


def test_lock_errors_are_recognised():
    assert is_retryable_lock_error(OperationalError("UPDATE", {}, _PgError("40P01")))
    assert is_retryable_lock_error(OperationalError("UPDATE", {}, Exception(1213, "Deadlock found")))
    assert is_retryable_lock_error(OperationalError("UPDATE", {}, Exception("database is locked")))
    assert not is_retryable_lock_error(OperationalError("UPDATE", {}, Exception("no such table: bookings")))


async def test_run_in_transaction_gives_up(session_factory):
    attempts = []

    async def always_stale(session):
        attempts.append(1)
        raise StaleDataError("lost the version check")

    with pytest.raises(RetryableConflict):
        await run_in_transaction(session_factory, always_stale, retries=3, backoff_seconds=0)
    assert len(attempts) == 3


async def test_other_errors_propagate_without_retry(session_factory):
    attempts = []

    async def broken(session):
        attempts.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        await run_in_transaction(session_factory, broken, retries=3, backoff_seconds=0)
    assert len(attempts) == 1


async def test_store_reports_exhausted_retries_as_concurrent_update(store):
    async def always_stale(session):
        raise StaleDataError("lost the version check")

    store.max_retries = 2
    with pytest.raises(ConcurrentUpdate):
        await store.transact(always_stale)
