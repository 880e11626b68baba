"""Booking operations behind the public HTTP API.

These are the clinic-facing counterparts of the WhatsApp conversation:
free-slot lookup for the booking page, creation of Pending bookings (the
patient then confirms over WhatsApp), operator cancellation by id and the
dashboard listing.
"""

from __future__ import annotations

import logging
from datetime import date

from clinic_bot import messages
from clinic_bot.appointments import AppointmentRepository
from clinic_bot.config import (
    CONSULTATION_MINUTES,
    OFFICE_HOURS,
    STRICT_BOOKING_WRITES,
    TIMEZONE,
)
from clinic_bot.models import Appointment, AppointmentStatus
from clinic_bot.notifications import NotificationGateway
from clinic_bot.phone import normalize_phone
from clinic_bot.scheduling import available_slots, day_bounds, event_color, event_summary
from clinic_bot.services.google_calendar import CalendarGateway
from clinic_bot.services.metrics import metrics

logger = logging.getLogger(__name__)

ALREADY_CANCELLED_MESSAGE = "Agendamento já estava Cancelado."


class BookingValidationError(ValueError):
    """A request field is missing, blank or unparseable."""


class BookingNotFoundError(LookupError):
    """No booking row carries the requested id."""


class BookingStorageError(RuntimeError):
    """The new row could not be written (strict mode only)."""


def _require(fields: dict[str, str | None]) -> dict[str, str]:
    cleaned = {name: str(value or "").strip() for name, value in fields.items()}
    missing = [name for name, value in cleaned.items() if not value]
    if missing:
        raise BookingValidationError(f"Todos os campos são obrigatórios (faltando: {', '.join(missing)}).")
    return cleaned


class BookingService:
    def __init__(
        self,
        repository: AppointmentRepository,
        calendar: CalendarGateway,
        notifier: NotificationGateway,
        *,
        office_hours: list[str] | None = None,
        duration_minutes: int = CONSULTATION_MINUTES,
        timezone: str = TIMEZONE,
        strict_writes: bool = STRICT_BOOKING_WRITES,
    ):
        self._repo = repository
        self._calendar = calendar
        self._notifier = notifier
        self._office_hours = list(office_hours if office_hours is not None else OFFICE_HOURS)
        self._duration_minutes = duration_minutes
        self._timezone = timezone
        self._strict_writes = strict_writes

    async def availability(self, day: int, month: int, year: int) -> list[str]:
        """Office-hour slots of the given day not taken by a calendar event.

        Calendar errors propagate; there is no sensible answer without it.
        """
        try:
            requested = date(int(year), int(month), int(day))
        except (TypeError, ValueError) as exc:
            raise BookingValidationError(f"Data inválida: {day}/{month}/{year}") from exc

        time_min, time_max = day_bounds(requested, self._timezone)
        events = await self._calendar.list_events(time_min, time_max)
        return available_slots(
            self._office_hours, events,
            duration_minutes=self._duration_minutes, tz_name=self._timezone,
        )

    async def create(
        self,
        *,
        patient_name: str,
        phone: str,
        email: str,
        date: str,
        time: str,
        procedure: str,
    ) -> Appointment:
        """Store a Pending booking and ask the patient to confirm it.

        If the sheet write fails the booking is still reported as created
        (with ``row_number == 0``) unless strict writes are enabled, in which
        case ``BookingStorageError`` is raised before anyone is notified.
        """
        fields = _require({
            "nome": patient_name,
            "telefone": phone,
            "email": email,
            "data_agendamento": date,
            "horario": time,
            "procedimento": procedure,
        })
        if not normalize_phone(fields["telefone"]):
            raise BookingValidationError("Telefone inválido.")

        appt = self._repo.new_pending(
            patient_name=fields["nome"],
            phone=fields["telefone"],
            email=fields["email"],
            date=fields["data_agendamento"],
            time=fields["horario"],
            procedure=fields["procedimento"],
        )
        try:
            await self._repo.insert(appt)
        except Exception as exc:
            if self._strict_writes:
                raise BookingStorageError("Falha ao gravar o agendamento na planilha.") from exc
            logger.exception("Failed to append booking %s; reporting success anyway", appt.id)

        patient_message = messages.pre_confirmation(appt)
        operator_message = messages.operator_notice(messages.OPERATOR_NEW_PENDING, appt)
        await self._notifier.send_text(appt.phone, patient_message)
        await self._notifier.notify_operator(operator_message, subject=messages.SUBJECT_NEW_PENDING)
        if appt.email and self._notifier.email_enabled:
            try:
                await self._notifier.send_email(appt.email, messages.SUBJECT_PRE_CONFIRMATION, patient_message)
            except Exception:
                logger.warning("Pre-confirmation e-mail for %s failed", appt.id, exc_info=True)

        metrics.record_event("booking_created", outcome="stored" if appt.row_number else "unstored")
        logger.info("Pending booking created: %s (row %s)", appt.patient_name, appt.row_number or "unknown")
        return appt

    async def cancel(self, appointment_id: str) -> str:
        """Operator cancellation by id; returns a human-readable outcome.

        The calendar event, if any, is kept and re-titled ``[CANCELADO]``.
        """
        wanted = str(appointment_id or "").strip()
        if not wanted:
            raise BookingValidationError("ID do agendamento é obrigatório.")

        appt = await self._repo.find_by_id(wanted)
        if appt is None:
            raise BookingNotFoundError(f"Agendamento {wanted} não encontrado na planilha.")
        if appt.status is AppointmentStatus.CANCELLED:
            return ALREADY_CANCELLED_MESSAGE

        await self._repo.set_status(appt, AppointmentStatus.CANCELLED)
        if appt.calendar_event_id:
            await self._calendar.patch_event(
                appt.calendar_event_id,
                event_summary(appt.patient_name, AppointmentStatus.CANCELLED),
                event_color(AppointmentStatus.CANCELLED),
            )
        await self._notifier.send_text(appt.phone, messages.clinic_cancelled(appt))

        metrics.record_event("appointment_cancelled", outcome="operator")
        logger.info("Booking %s cancelled by the clinic (row %d)", appt.id, appt.row_number)
        return f"Agendamento {wanted} cancelado com sucesso."

    async def list_bookings(self) -> list[dict[str, str]]:
        return await self._repo.records()
