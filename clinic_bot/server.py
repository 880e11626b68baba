"""FastAPI server for the clinic scheduling bot.

Run with:
    uvicorn clinic_bot.server:app --host 0.0.0.0 --port 4000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from clinic_bot.api.routes import router
from clinic_bot.appointments import AppointmentRepository
from clinic_bot.bookings import BookingService
from clinic_bot.config import CORS_ORIGINS, REMINDERS_ENABLED, SERVER_HOST, SERVER_PORT
from clinic_bot.conversation import ConversationEngine
from clinic_bot.notifications import Notifier
from clinic_bot.reminders import ReminderScheduler, build_scheduler
from clinic_bot.services.google_api import ServiceAccountTokenProvider
from clinic_bot.services.google_calendar import GoogleCalendarClient
from clinic_bot.services.google_sheets import GoogleSheetsStore
from clinic_bot.services.mailer import Mailer
from clinic_bot.services.metrics import metrics
from clinic_bot.services.whatsapp import WhatsAppChannel

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Wire the collaborators once and keep them in app state.

    Sheets and Calendar share one service-account token provider.  The
    reminder scheduler runs on this same event loop.
    """
    tokens = ServiceAccountTokenProvider()
    if not tokens.configured:
        logger.warning("Google service-account credentials missing; Sheets and Calendar calls will fail.")
    store = GoogleSheetsStore(token_provider=tokens)
    calendar = GoogleCalendarClient(token_provider=tokens)
    channel = WhatsAppChannel()
    mailer = Mailer()
    if not mailer.enabled:
        logger.info("EMAIL_USER/EMAIL_PASS not set; e-mail notifications disabled.")
    notifier = Notifier(channel, mailer)
    repository = AppointmentRepository(store)

    application.state.channel = channel
    application.state.engine = ConversationEngine(repository, calendar, notifier)
    application.state.bookings = BookingService(repository, calendar, notifier)

    await channel.refresh_status()
    logger.info("WhatsApp channel status at start-up: %s", channel.status.value)

    scheduler = None
    if REMINDERS_ENABLED:
        scheduler = build_scheduler(ReminderScheduler(repository, notifier))
        scheduler.start()
    logger.info("Clinic bot ready.")
    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
    await channel.aclose()
    await store.aclose()
    await calendar.aclose()
    metrics.flush()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Clinic Bot",
    description=(
        "WhatsApp scheduling assistant for a dental clinic: bookings, "
        "confirmations, cancellations and reminders."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID (``X-Request-ID``) to every request and response."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Clinic Bot",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting clinic bot API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "clinic_bot.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
    )
