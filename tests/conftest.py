"""Shared test fixtures for the clinic bot test suite."""

from __future__ import annotations

import os
from typing import Any

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    config.py reads the environment at import time, so this must run before
    any ``clinic_bot`` module is imported.
    """
    os.environ.setdefault("REMINDERS_ENABLED", "false")
    os.environ.setdefault("METRICS_ENABLED", "false")
    os.environ.setdefault("SPREADSHEET_ID", "test-spreadsheet")
    os.environ.setdefault("CALENDAR_ID", "clinic@group.calendar.google.com")
    os.environ.setdefault("DENTIST_EMAIL", "dentista@example.com")
    os.environ.setdefault("TIMEZONE", "America/Sao_Paulo")


PATIENT_PHONE = "5511987654321"
OPERATOR_PHONE = "5511900000000"


class FakeCalendar:
    """In-memory CalendarGateway that records every call."""

    def __init__(self) -> None:
        self.created: list[dict[str, Any]] = []
        self.patched: list[tuple[str, str, str]] = []
        self.deleted: list[str] = []
        self.events: list[dict[str, Any]] = []
        self.listed: list[tuple[Any, Any]] = []
        self.create_result: str | None = "evt-1"

    async def create_event(self, summary, description, start, end, color_id):
        self.created.append(
            {
                "summary": summary,
                "description": description,
                "start": start,
                "end": end,
                "color_id": color_id,
            }
        )
        return self.create_result

    async def patch_event(self, event_id, summary, color_id):
        self.patched.append((event_id, summary, color_id))
        return event_id

    async def delete_event(self, event_id):
        self.deleted.append(event_id)
        return True

    async def list_events(self, time_min, time_max):
        self.listed.append((time_min, time_max))
        return list(self.events)


class RecordingNotifier:
    """NotificationGateway that only records what would have been sent."""

    def __init__(self, *, email_enabled: bool = True) -> None:
        self.email_enabled = email_enabled
        self.texts: list[tuple[str, str]] = []
        self.emails: list[tuple[str, str, str]] = []
        self.operator: list[tuple[str, str | None]] = []

    async def send_text(self, phone, message):
        self.texts.append((phone, message))
        return True

    async def send_email(self, to, subject, body):
        if self.email_enabled and to:
            self.emails.append((to, subject, body))

    async def notify_operator(self, message, subject=None):
        self.operator.append((message, subject))


def make_row(
    *,
    id: str = "appt-1",
    name: str = "Ana",
    phone: str = PATIENT_PHONE,
    email: str = "a@x.com",
    date: str = "10/05/2025",
    time: str = "18:00",
    status: str = "Pendente",
    procedure: str = "limpeza",
    event_id: str = "",
    client_marker: str = "",
    operator_marker: str = "",
    created_at: str = "2025-05-01T12:00:00+00:00",
) -> list[str]:
    return [
        id, name, phone, email, date, time, status, procedure,
        event_id, client_marker, operator_marker, created_at,
    ]


@pytest.fixture
def row():
    """Factory for a sheet row (A–L) with sensible defaults."""
    return make_row


@pytest.fixture
def store():
    from clinic_bot.appointments import InMemoryAppointmentStore

    return InMemoryAppointmentStore()


@pytest.fixture
def repository(store):
    from clinic_bot.appointments import AppointmentRepository

    return AppointmentRepository(store)


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def notifier():
    return RecordingNotifier()
