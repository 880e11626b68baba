"""Domain types: appointment rows, their status, reminder milestones, and the
per-phone conversation state.

An appointment is one spreadsheet row (columns A–L).  The sheet keeps status
and reminder markers as plain strings; the enums here parse them leniently
so hand-edited rows ("confirmado", "CONFIRMADO") still match.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

# ── Column layout (A–L) ──────────────────────────────────────────────

COLUMNS = "ABCDEFGHIJKL"
COL_ID = "A"
COL_NAME = "B"
COL_PHONE = "C"
COL_EMAIL = "D"
COL_DATE = "E"
COL_TIME = "F"
COL_STATUS = "G"
COL_PROCEDURE = "H"
COL_CALENDAR_EVENT = "I"
COL_CLIENT_NOTIFIED = "J"
COL_OPERATOR_NOTIFIED = "K"
COL_CREATED_AT = "L"

HEADERS = [
    "id",
    "nome",
    "telefone",
    "email",
    "data_agendamento",
    "horario",
    "status",
    "procedimento",
    "calendar_event_id",
    "notificado_cliente",
    "notificado_dentista",
    "criado_em",
]


def column_index(column: str) -> int:
    """Zero-based index of a column letter within the A–L layout."""
    return COLUMNS.index(column.upper())


class AppointmentStatus(str, Enum):
    PENDING = "Pendente"
    CONFIRMED = "Confirmado"
    CANCELLED = "Cancelado"

    @classmethod
    def parse(cls, raw: str | None) -> AppointmentStatus | None:
        value = str(raw or "").strip().lower()
        for status in cls:
            if status.value.lower() == value:
                return status
        return None


class NotifiedMilestone(IntEnum):
    """Reminder marker; only ever moves forward."""

    NONE = 0
    REMINDED_24H = 1
    REMINDED_2H = 2

    @classmethod
    def parse(cls, raw: str | None) -> NotifiedMilestone:
        value = str(raw or "").strip()
        if value == "1":
            return cls.REMINDED_24H
        if value == "2":
            return cls.REMINDED_2H
        return cls.NONE

    @property
    def marker(self) -> str:
        return "" if self is NotifiedMilestone.NONE else str(int(self))


class ConversationState(str, Enum):
    IDLE = "IDLE"
    AWAITING_CANCEL_CONFIRMATION = "AWAITING_CANCEL_CONFIRMATION"
    AWAITING_LINK = "AWAITING_LINK"


@dataclass(slots=True)
class Appointment:
    """One booking attempt, as stored in a spreadsheet row.

    ``row_number`` is the 1-based sheet row (the header is row 1) and is the
    locator for every later write.
    """

    id: str
    patient_name: str
    phone: str
    email: str
    date: str
    time: str
    status_raw: str
    procedure: str = ""
    calendar_event_id: str = ""
    client_notified: str = ""
    operator_notified: str = ""
    created_at: str = ""
    row_number: int = 0

    @classmethod
    def from_row(cls, row: list[str], row_number: int) -> Appointment:
        # Sheets drops trailing empty cells, so short rows are normal.
        cells = [str(cell) if cell is not None else "" for cell in row]
        cells += [""] * (len(COLUMNS) - len(cells))
        return cls(
            id=cells[0].strip(),
            patient_name=cells[1],
            phone=cells[2],
            email=cells[3].strip(),
            date=cells[4].strip(),
            time=cells[5].strip(),
            status_raw=cells[6],
            procedure=cells[7],
            calendar_event_id=cells[8].strip(),
            client_notified=cells[9],
            operator_notified=cells[10],
            created_at=cells[11],
            row_number=row_number,
        )

    def to_row(self) -> list[str]:
        return [
            self.id,
            self.patient_name,
            self.phone,
            self.email,
            self.date,
            self.time,
            self.status_raw,
            self.procedure,
            self.calendar_event_id,
            self.client_notified,
            self.operator_notified,
            self.created_at,
        ]

    @property
    def status(self) -> AppointmentStatus | None:
        return AppointmentStatus.parse(self.status_raw)

    @property
    def is_active(self) -> bool:
        return self.status in (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)

    @property
    def milestone(self) -> NotifiedMilestone:
        return NotifiedMilestone.parse(self.client_notified)

    def to_record(self) -> dict:
        """Plain-dict form (JSON/checkpoint friendly)."""
        return {"values": self.to_row(), "row_number": self.row_number}

    @classmethod
    def from_record(cls, record: dict | None) -> Appointment | None:
        if not record:
            return None
        return cls.from_row(list(record["values"]), int(record["row_number"]))
