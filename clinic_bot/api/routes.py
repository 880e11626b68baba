"""FastAPI route definitions for the clinic bot API."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request

from clinic_bot.api.schemas import (
    AvailabilityResponse,
    BookingRequest,
    BookingResponse,
    CancelRequest,
    CancelResponse,
    ChannelStatusResponse,
    HealthResponse,
    ReadyResponse,
    WebhookEvent,
    WebhookResponse,
)
from clinic_bot.bookings import BookingNotFoundError, BookingStorageError, BookingValidationError
from clinic_bot.services.whatsapp import ChannelStatus, WhatsAppError, map_bridge_status

logger = logging.getLogger(__name__)

router = APIRouter()

GENERIC_ERROR = "An internal error occurred. Please try again."


def _get_component(request: Request, name: str):
    """Fetch a component built during the FastAPI lifespan (see ``server.py``)."""
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=503,
            detail="The service is still starting up. Please try again in a moment.",
        )
    return component


def _internal_error(request: Request, what: str) -> HTTPException:
    # Full traceback server-side only; the client gets a generic detail.
    logger.exception("[%s] Error %s", getattr(request.state, "request_id", "?"), what)
    return HTTPException(status_code=500, detail=GENERIC_ERROR)


# ── Health & channel status ──────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.get("/whatsapp/status", response_model=ChannelStatusResponse)
async def whatsapp_status(http_request: Request):
    channel = _get_component(http_request, "channel")
    return ChannelStatusResponse(status=channel.status.value, qr_code=channel.qr_code)


@router.get("/whatsapp/ready", response_model=ReadyResponse)
async def whatsapp_ready(http_request: Request):
    """Lets the booking page warn when confirmations cannot be delivered."""
    channel = _get_component(http_request, "channel")
    return ReadyResponse(is_ready=channel.is_connected, status=channel.status.value)


# ── Bookings ─────────────────────────────────────────────────────────


@router.get("/availability", response_model=AvailabilityResponse)
async def availability(
    http_request: Request,
    day: int = Query(..., ge=1, le=31),
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000),
):
    bookings = _get_component(http_request, "bookings")
    try:
        slots = await bookings.availability(day, month, year)
    except BookingValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        raise _internal_error(http_request, "checking availability") from exc
    return AvailabilityResponse(available=slots)


@router.post("/bookings", response_model=BookingResponse)
async def create_booking(request: BookingRequest, http_request: Request):
    """Create a Pending booking; the patient confirms it over WhatsApp."""
    bookings = _get_component(http_request, "bookings")
    try:
        appt = await bookings.create(
            patient_name=request.patient_name,
            phone=request.phone,
            email=request.email,
            date=request.date,
            time=request.time,
            procedure=request.procedure,
        )
    except BookingValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except BookingStorageError as exc:
        logger.error("[%s] %s", getattr(http_request.state, "request_id", "?"), exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except Exception as exc:
        raise _internal_error(http_request, "creating booking") from exc
    return BookingResponse(id=appt.id, row=appt.row_number or None)


@router.post("/bookings/cancel", response_model=CancelResponse)
async def cancel_booking(request: CancelRequest, http_request: Request):
    """Clinic-side cancellation by booking id."""
    bookings = _get_component(http_request, "bookings")
    try:
        message = await bookings.cancel(request.id)
    except BookingValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except Exception as exc:
        raise _internal_error(http_request, "cancelling booking") from exc
    return CancelResponse(message=message)


@router.get("/bookings")
async def list_bookings(http_request: Request) -> list[dict[str, str]]:
    """Every sheet row as a ``header → value`` mapping, for the dashboard."""
    bookings = _get_component(http_request, "bookings")
    try:
        return await bookings.list_bookings()
    except Exception as exc:
        raise _internal_error(http_request, "listing bookings") from exc


# ── Inbound WhatsApp ─────────────────────────────────────────────────


@router.post("/whatsapp/webhook", response_model=WebhookResponse)
async def whatsapp_webhook(event: WebhookEvent, http_request: Request):
    """Session status updates and inbound messages from the WhatsApp bridge."""
    channel = _get_component(http_request, "channel")

    if event.event == "session.status":
        channel.update_status(map_bridge_status(event.payload.get("status")))
        return WebhookResponse()
    if event.event != "message":
        return WebhookResponse()

    payload = event.payload
    if payload.get("fromMe"):
        return WebhookResponse()
    sender = str(payload.get("from") or "")
    body = str(payload.get("body") or "")
    # A delivered message means the session is up, whatever we last heard.
    channel.update_status(ChannelStatus.CONNECTED)

    engine = _get_component(http_request, "engine")
    reply = await engine.handle_message(sender, body)
    if not reply:
        return WebhookResponse()

    try:
        await channel.send_text(sender, reply)
    except WhatsAppError as exc:
        logger.error("[%s] Reply to %s not delivered: %s",
                     getattr(http_request.state, "request_id", "?"), sender, exc)
        return WebhookResponse(replied=False)
    return WebhookResponse(replied=True)
