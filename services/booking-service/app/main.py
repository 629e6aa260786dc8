import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.redis import get_redis
from .clients import HttpChatSessions, HttpCustomerDirectory, HttpVerificationMessenger
from .config import (
    CHAT_SERVICE_URL,
    DATABASE_URL,
    LOG_LEVEL,
    NOTIFICATION_SERVICE_URL,
    RABBIT_URL,
    REDIS_URL,
    TX_MAX_RETRIES,
    USER_SERVICE_URL,
)
from .consumer import start_consumer
from .db import create_session_factory
from .errors import BookingEngineError, Throttled
from .middleware import RequestLoggingMiddleware
from .notifications import RabbitNotificationDispatcher
from .routes import router
from .services import EngineServices, build_services
from .store import BookingStore

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("aio_pika").setLevel(logging.WARNING)
logging.getLogger("aiormq").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


async def booking_error_handler(request: Request, exc: BookingEngineError):
    headers = {}
    if isinstance(exc, Throttled):
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
        headers=headers,
    )


def create_app(services: EngineServices | None = None) -> FastAPI:
    app = FastAPI(title="Booking Service")
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(BookingEngineError, booking_error_handler)
    app.include_router(router)

    app.state.services = services
    app.state.engine = None
    app.state.consumer_conn = None

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "booking-service"}

    @app.on_event("startup")
    async def startup():
        if app.state.services is not None:
            return

        engine, session_factory = create_session_factory(DATABASE_URL)
        app.state.engine = engine

        dispatcher = RabbitNotificationDispatcher(RABBIT_URL)
        try:
            await dispatcher.connect()
        except Exception:
            # publish() reconnects lazily
            logger.warning("could not reach rabbitmq at startup", exc_info=True)

        app.state.services = build_services(
            store=BookingStore(session_factory, max_retries=TX_MAX_RETRIES),
            dispatcher=dispatcher,
            directory=HttpCustomerDirectory(USER_SERVICE_URL),
            messenger=HttpVerificationMessenger(NOTIFICATION_SERVICE_URL),
            chat_sessions=HttpChatSessions(CHAT_SERVICE_URL),
        )

        if RABBIT_URL and REDIS_URL:
            app.state.consumer_conn = await start_consumer(
                RABBIT_URL, app.state.services.lifecycle, get_redis(REDIS_URL)
            )
        else:
            logger.info("RABBIT_URL or REDIS_URL unset, payment consumer disabled")

        logger.info("booking-service started")

    @app.on_event("shutdown")
    async def shutdown():
        conn = app.state.consumer_conn
        try:
            if conn and not conn.is_closed:
                await conn.close()
        except Exception:
            logger.warning("error closing consumer connection", exc_info=True)

        services = app.state.services
        if services is not None and isinstance(services.dispatcher, RabbitNotificationDispatcher):
            try:
                await services.dispatcher.close()
            except Exception:
                logger.warning("error closing publisher connection", exc_info=True)

        if app.state.engine is not None:
            await app.state.engine.dispose()

    return app


app = create_app()
