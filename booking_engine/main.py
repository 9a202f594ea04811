import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from booking_engine.api.routes import appointments, availability, booking, cron
from booking_engine.core.config import _ENV_FILE, settings
from booking_engine.core.db import async_session_maker
from booking_engine.services.email_service import EmailNotificationGateway
from booking_engine.services.reminder_service import ReminderScheduler, reminder_loop

if os.getenv("ENV") != "production":
    logging.basicConfig(level=logging.DEBUG)
else:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}',
    )
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Loading .env from: %s (exists: %s)", _ENV_FILE, _ENV_FILE.exists())
    if not settings.cron_secret:
        logger.warning("CRON_SECRET is not set; the reminder trigger endpoint will reject every call")
    if not settings.email_enabled:
        logger.warning("SMTP not configured; reminders will fail and be retried until configured")
    task = None
    if settings.reminder_loop_enabled:
        scheduler = ReminderScheduler(async_session_maker, EmailNotificationGateway())
        task = asyncio.create_task(reminder_loop(scheduler))
    yield
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(
    title="Booking Engine API",
    description="Appointment availability, public booking and reminder dispatch",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# Literal /appointments/... paths must be registered before /appointments/{appointment_id}
app.include_router(availability.router, prefix="/api/v1")
app.include_router(booking.router, prefix="/api/v1")
app.include_router(appointments.router, prefix="/api/v1")
app.include_router(cron.router, prefix="/api")


def _cors_headers(origin: str | None) -> dict[str, str]:
    """Add CORS headers to error responses so the browser doesn't block them."""
    headers = {
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Authorization, Content-Type",
    }
    if origin and origin in settings.cors_origins_list:
        headers["Access-Control-Allow-Origin"] = origin
    elif settings.cors_origins_list:
        headers["Access-Control-Allow-Origin"] = settings.cors_origins_list[0]
    return headers


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return the error as JSON; include CORS so 500 responses are not blocked by the browser."""
    origin = request.headers.get("origin")
    headers = _cors_headers(origin)
    if isinstance(exc, HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=headers,
        )
    logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)
    # Internal error details are only echoed back outside production
    detail = "Internal server error" if settings.env == "production" else f"{type(exc).__name__}: {exc}"
    return JSONResponse(
        status_code=500,
        content={"detail": detail},
        headers=headers,
    )


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
