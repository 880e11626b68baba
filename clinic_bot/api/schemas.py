"""Pydantic schemas for the FastAPI endpoints.

Booking fields accept both the English names and the Portuguese ones the
booking page and dashboard have always sent (``nome``, ``telefone``, …).
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, Field


class BookingRequest(BaseModel):
    """New booking from the public booking page."""

    patient_name: str = Field(..., validation_alias=AliasChoices("patient_name", "nome"))
    phone: str = Field(..., validation_alias=AliasChoices("phone", "telefone"))
    email: str = Field(..., validation_alias=AliasChoices("email"))
    date: str = Field(
        ...,
        validation_alias=AliasChoices("date", "data_agendamento"),
        description="DD/MM/YYYY",
    )
    time: str = Field(..., validation_alias=AliasChoices("time", "horario"), description="HH:MM")
    procedure: str = Field(..., validation_alias=AliasChoices("procedure", "procedimento"))


class BookingResponse(BaseModel):
    ok: bool = True
    id: str = Field(..., description="Booking id (column A)")
    row: int | None = Field(None, description="Sheet row, when the store reported it")


class CancelRequest(BaseModel):
    id: str = Field(..., description="Booking id to cancel")


class CancelResponse(BaseModel):
    ok: bool = True
    message: str


class AvailabilityResponse(BaseModel):
    available: list[str] = Field(default_factory=list, description="Free HH:MM slots")


class ChannelStatusResponse(BaseModel):
    """WhatsApp connection state, polled by the pairing page."""

    status: str
    qr_code: str | None = Field(None, description="data:image/png;base64 URL while pairing")


class ReadyResponse(BaseModel):
    is_ready: bool
    status: str


class WebhookEvent(BaseModel):
    """Event pushed by the WhatsApp bridge."""

    event: str
    session: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class WebhookResponse(BaseModel):
    ok: bool = True
    replied: bool = False


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "clinic-bot"
