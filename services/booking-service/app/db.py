from shared.database import Base, get_engine, get_session

from .config import DATABASE_URL

__all__ = ["Base", "create_session_factory"]


def create_session_factory(database_url: str | None = DATABASE_URL):
    if not database_url:
        raise RuntimeError("BOOKING_DB environment variable is not set")

    engine = get_engine(database_url, pool_pre_ping=True)
    return engine, get_session(engine)
