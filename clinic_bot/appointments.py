"""Appointment storage: the tabular store contract and every query the bot
runs against it.

The store is deliberately dumb — append a row, overwrite a cell, read all
rows — because the production backend is a Google Sheet.  All access-pattern
logic lives in :class:`AppointmentRepository`:

* "the" Pending / active appointment for a phone is the **most recent**
  matching row (scan from the bottom).  Nothing enforces one active row per
  phone, so last-write relevance is the rule.
* phones are compared after normalising both sides, so hand-typed numbers in
  the sheet still match WhatsApp senders.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import UTC, datetime
from typing import Protocol

from clinic_bot.models import (
    COL_CALENDAR_EVENT,
    COL_CLIENT_NOTIFIED,
    COL_OPERATOR_NOTIFIED,
    COL_STATUS,
    HEADERS,
    Appointment,
    AppointmentStatus,
    NotifiedMilestone,
    column_index,
)
from clinic_bot.phone import normalize_phone

logger = logging.getLogger(__name__)


class AppointmentStore(Protocol):
    """Row-oriented table with a header in row 1 (1-based row numbers)."""

    async def append(self, row: list[str]) -> int | None:
        """Append *row*; return its row number when the backend reports it."""
        ...

    async def update_cell(self, row_number: int, column: str, value: str) -> None: ...

    async def query_all(self) -> list[list[str]]:
        """All rows, header included."""
        ...


class InMemoryAppointmentStore:
    """Process-local store with the same semantics as the Google Sheet.

    Used by the CLI simulator and the test-suite.  Purely ephemeral.
    """

    def __init__(self, rows: list[list[str]] | None = None) -> None:
        self._rows: list[list[str]] = [list(HEADERS)]
        for row in rows or []:
            self._rows.append([str(cell) for cell in row])
        self._lock = asyncio.Lock()

    async def append(self, row: list[str]) -> int:
        async with self._lock:
            self._rows.append([str(cell) for cell in row])
            return len(self._rows)

    async def update_cell(self, row_number: int, column: str, value: str) -> None:
        async with self._lock:
            if row_number < 1 or row_number > len(self._rows):
                raise IndexError(f"row {row_number} out of range")
            row = self._rows[row_number - 1]
            idx = column_index(column)
            if len(row) <= idx:
                row.extend([""] * (idx + 1 - len(row)))
            row[idx] = value

    async def query_all(self) -> list[list[str]]:
        async with self._lock:
            return [list(row) for row in self._rows]

    @property
    def rows(self) -> list[list[str]]:
        return self._rows


class AppointmentRepository:
    """Domain-level queries and mutations over an :class:`AppointmentStore`."""

    def __init__(self, store: AppointmentStore) -> None:
        self._store = store

    @property
    def store(self) -> AppointmentStore:
        return self._store

    # ── Reads ────────────────────────────────────────────────────────

    async def all(self) -> list[Appointment]:
        """Every data row (header skipped), in sheet order."""
        rows = await self._store.query_all()
        return [
            Appointment.from_row(row, row_number)
            for row_number, row in enumerate(rows[1:], start=2)
        ]

    async def _latest(self, phone: str, statuses: tuple[AppointmentStatus, ...]) -> Appointment | None:
        target = normalize_phone(phone)
        if not target:
            return None
        for appointment in reversed(await self.all()):
            if appointment.status in statuses and normalize_phone(appointment.phone) == target:
                return appointment
        return None

    async def find_pending(self, phone: str) -> Appointment | None:
        """Most recent Pending appointment for *phone*."""
        return await self._latest(phone, (AppointmentStatus.PENDING,))

    async def find_active(self, phone: str) -> Appointment | None:
        """Most recent Pending or Confirmed appointment for *phone*."""
        return await self._latest(
            phone, (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED),
        )

    async def find_by_id(self, appointment_id: str) -> Appointment | None:
        wanted = appointment_id.strip()
        for appointment in await self.all():
            if appointment.id == wanted:
                return appointment
        return None

    async def records(self) -> list[dict[str, str]]:
        """Dashboard view: one ``header → value`` dict per data row.

        Headers come from the sheet's first row.  ``data`` mirrors
        ``data_agendamento`` for older dashboards.
        """
        rows = await self._store.query_all()
        if len(rows) < 2:
            return []
        headers = [str(h).strip() for h in rows[0]]
        records: list[dict[str, str]] = []
        for row in rows[1:]:
            record = {
                header: (row[idx] if idx < len(row) and row[idx] is not None else "")
                for idx, header in enumerate(headers)
            }
            record["data"] = record.get("data_agendamento") or record.get("data", "")
            records.append(record)
        return records

    # ── Writes ───────────────────────────────────────────────────────

    @staticmethod
    def new_pending(
        *,
        patient_name: str,
        phone: str,
        email: str,
        date: str,
        time: str,
        procedure: str,
    ) -> Appointment:
        """A fresh, not yet stored, Pending appointment."""
        return Appointment(
            id=str(uuid.uuid4()),
            patient_name=patient_name,
            phone=normalize_phone(phone),
            email=email,
            date=date,
            time=time,
            status_raw=AppointmentStatus.PENDING.value,
            procedure=procedure,
            created_at=datetime.now(UTC).isoformat(),
        )

    async def insert(self, appointment: Appointment) -> Appointment:
        """Append *appointment* as a new row (row number stays 0 if the
        backend did not report where the row landed)."""
        row_number = await self._store.append(appointment.to_row())
        appointment.row_number = row_number or 0
        return appointment

    async def create(self, **fields: str) -> Appointment:
        return await self.insert(self.new_pending(**fields))

    async def set_status(self, appointment: Appointment, status: AppointmentStatus) -> None:
        await self._store.update_cell(appointment.row_number, COL_STATUS, status.value)
        appointment.status_raw = status.value

    async def set_calendar_event(self, appointment: Appointment, event_id: str) -> None:
        """Store (or clear, with ``""``) the calendar event id."""
        await self._store.update_cell(appointment.row_number, COL_CALENDAR_EVENT, event_id)
        appointment.calendar_event_id = event_id

    async def mark_notified(self, appointment: Appointment, milestone: NotifiedMilestone) -> None:
        """Write the milestone to both marker columns.

        The two writes are independent; a failure on either is logged and
        the other still goes through.
        """
        for column, attr in (
            (COL_CLIENT_NOTIFIED, "client_notified"),
            (COL_OPERATOR_NOTIFIED, "operator_notified"),
        ):
            try:
                await self._store.update_cell(appointment.row_number, column, milestone.marker)
                setattr(appointment, attr, milestone.marker)
            except Exception:
                logger.warning(
                    "Failed to write %s marker to column %s (row %d)",
                    milestone.name, column, appointment.row_number, exc_info=True,
                )
