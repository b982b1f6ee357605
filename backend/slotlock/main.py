import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .config import settings
from .database import SessionLocal
from .dependencies import BookingServices, build_services, get_services
from .redis_client import redis_client
from .routers import appointments, availability, monitoring, slots
from .services.email_service import SmtpMailer
from .services.google_calendar import GoogleCalendarClient, google_busy_provider
from .services.slots.errors import ErrorKind, SlotLockError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SELLER_NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID_STATE: 400,
    ErrorKind.ALREADY_LOCKED: 409,
    ErrorKind.ALREADY_BOOKED: 409,
    ErrorKind.CONFLICT: 409,
    ErrorKind.EXPIRED: 410,
}


def default_services() -> BookingServices:
    google_enabled = bool(settings.google_client_id and settings.google_client_secret)
    return build_services(
        SessionLocal,
        redis=redis_client,
        calendar=GoogleCalendarClient() if google_enabled else None,
        mailer=SmtpMailer(),
        busy_provider=google_busy_provider if google_enabled else None,
    )


def create_app(services: BookingServices | None = None, run_background: bool | None = None) -> FastAPI:
    if run_background is None:
        run_background = settings.enable_slot_cleanup

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = app.state.services
        services.start()

        tasks = []
        if run_background:
            tasks.append(asyncio.create_task(services.sweeper.run()))
            tasks.append(asyncio.create_task(services.worker.run()))
            logger.info("Background tasks started: expiry sweeper, notification worker")

        yield

        services.close()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Background tasks stopped")

    app = FastAPI(title="Slot Lock API", lifespan=lifespan)
    app.state.services = services or default_services()

    @app.exception_handler(SlotLockError)
    async def slot_lock_error_handler(request: Request, exc: SlotLockError) -> JSONResponse:
        return JSONResponse(
            {"error": exc.kind.value, "detail": exc.detail, **exc.context},
            status_code=ERROR_STATUS[exc.kind],
        )

    app.include_router(slots.router)
    app.include_router(appointments.router)
    app.include_router(availability.router)
    app.include_router(monitoring.router)

    @app.get("/health")
    def health(services: BookingServices = Depends(get_services)):
        db_ok = True
        try:
            with services.session_factory() as db:
                db.execute(text("SELECT 1"))
        except Exception:
            logger.exception("Database health check failed")
            db_ok = False
        try:
            cache_ok = services.caches.slots.ping()
        except Exception:
            logger.exception("Cache health check failed")
            cache_ok = False
        return {"status": "ok" if db_ok and cache_ok else "degraded", "database": db_ok, "cache": cache_ok}

    return app


app = create_app()
