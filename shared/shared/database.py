import asyncio
import logging
import random

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)

# postgres deadlock / serialization failure
_RETRYABLE_SQLSTATES = {"40P01", "40001"}
# mysql deadlock / lock wait timeout
_RETRYABLE_MYSQL_CODES = {1213, 1205}
_RETRYABLE_MESSAGES = ("deadlock detected", "could not serialize access", "database is locked")


def get_engine(database_url: str, **kwargs):
    return create_async_engine(database_url, echo=False, future=True, **kwargs)

Base = declarative_base()

def get_session(engine):
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False
    )


class RetryableConflict(Exception):
    """Raised when a unit of work kept colliding with concurrent writers."""


def is_retryable_lock_error(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True
    args = getattr(orig, "args", None) or ()
    if args and args[0] in _RETRYABLE_MYSQL_CODES:
        return True
    message = str(exc).lower()
    return any(m in message for m in _RETRYABLE_MESSAGES)


async def run_in_transaction(session_factory, work, *, retries: int = 5, backoff_seconds: float = 0.02):
    """
    Run `work(session)` inside one transaction and return its result.

    The whole unit of work is re-run with a fresh session when the commit
    loses an optimistic version check or the driver reports a lock conflict.
    Any other exception rolls the transaction back and propagates.
    """
    for attempt in range(1, retries + 1):
        try:
            async with session_factory() as session:
                async with session.begin():
                    result = await work(session)
            return result
        except StaleDataError as e:
            reason = f"stale row: {e}"
        except DBAPIError as e:
            if not is_retryable_lock_error(e):
                raise
            reason = f"lock conflict: {e.orig!r}"

        logger.info("transaction attempt %s/%s aborted (%s)", attempt, retries, reason)
        if attempt < retries:
            await asyncio.sleep(backoff_seconds * attempt * (1 + random.random()))

    raise RetryableConflict(f"gave up after {retries} attempts")
