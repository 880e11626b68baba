"""Tests for the reminder sweep and its scheduler wiring."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from apscheduler.triggers.interval import IntervalTrigger

from clinic_bot.models import NotifiedMilestone
from clinic_bot.reminders import JOB_ID, ReminderScheduler, build_scheduler, due_milestone

SP = ZoneInfo("America/Sao_Paulo")
APPOINTMENT_AT = datetime(2025, 5, 10, 18, 0, tzinfo=SP)
OPERATOR = "5511900000000"


@pytest.fixture
def reminders(repository, notifier):
    return ReminderScheduler(
        repository, notifier, tolerance_minutes=10, timezone="America/Sao_Paulo",
        operator_phone=OPERATOR,
    )


def _sweep_at(reminders, minutes_before: int) -> int:
    return asyncio.run(reminders.sweep(now=APPOINTMENT_AT - timedelta(minutes=minutes_before)))


# ── due_milestone ───────────────────────────────────────────────────


class TestDueMilestone:
    @pytest.mark.parametrize("delta", [1430, 1440, 1450])
    def test_24h_window(self, delta):
        assert due_milestone(delta, NotifiedMilestone.NONE, 10) is NotifiedMilestone.REMINDED_24H

    @pytest.mark.parametrize("delta", [1429, 1455, 600])
    def test_outside_any_window(self, delta):
        assert due_milestone(delta, NotifiedMilestone.NONE, 10) is None

    def test_2h_window(self):
        assert due_milestone(115, NotifiedMilestone.REMINDED_24H, 10) is NotifiedMilestone.REMINDED_2H

    def test_already_sent_milestone_does_not_refire(self):
        assert due_milestone(1440, NotifiedMilestone.REMINDED_24H, 10) is None
        assert due_milestone(120, NotifiedMilestone.REMINDED_2H, 10) is None

    def test_2h_fires_even_if_24h_was_missed(self):
        assert due_milestone(120, NotifiedMilestone.NONE, 10) is NotifiedMilestone.REMINDED_2H

    def test_markers_never_go_backwards(self):
        # A row already at 2h that somehow lands in the 24h window stays quiet.
        assert due_milestone(1440, NotifiedMilestone.REMINDED_2H, 10) is None


# ── sweep ────────────────────────────────────────────────────────────


class TestSweep:
    def test_24h_reminder_fires_once(self, reminders, store, notifier, row):
        store.rows.append(row(status="Confirmado"))

        assert _sweep_at(reminders, 1440) == 1
        assert _sweep_at(reminders, 1435) == 0

        phones = [phone for phone, _ in notifier.texts]
        assert phones == ["5511987654321", OPERATOR]
        assert "amanhã às 18:00" in notifier.texts[0][1]
        assert "limpeza" in notifier.texts[0][1]
        assert store.rows[1][9] == "1"
        assert store.rows[1][10] == "1"

    def test_fires_at_edge_of_tolerance(self, reminders, store, row):
        store.rows.append(row(status="Confirmado"))
        assert _sweep_at(reminders, 1450) == 1

    def test_does_not_fire_outside_tolerance(self, reminders, store, notifier, row):
        store.rows.append(row(status="Confirmado"))
        assert _sweep_at(reminders, 1455) == 0
        assert notifier.texts == []

    def test_2h_reminder_after_24h(self, reminders, store, notifier, row):
        store.rows.append(row(status="Confirmado", client_marker="1", operator_marker="1"))

        assert _sweep_at(reminders, 120) == 1
        assert "HOJE às 18:00" in notifier.texts[0][1]
        assert store.rows[1][9] == "2"
        assert store.rows[1][10] == "2"

    @pytest.mark.parametrize("status", ["Pendente", "Cancelado", ""])
    def test_only_confirmed_rows(self, reminders, store, notifier, row, status):
        store.rows.append(row(status=status))
        assert _sweep_at(reminders, 1440) == 0
        assert notifier.texts == []

    def test_status_is_case_insensitive(self, reminders, store, row):
        store.rows.append(row(status="CONFIRMADO"))
        assert _sweep_at(reminders, 1440) == 1

    def test_skips_rows_without_id_or_bad_dates(self, reminders, store, row):
        store.rows.append(row(id="", status="Confirmado"))
        store.rows.append(row(id="bad-date", status="Confirmado", date="2025-05-10"))
        store.rows.append(row(id="bad-time", status="Confirmado", time="noite"))
        store.rows.append(row(id="ok", status="Confirmado"))

        assert _sweep_at(reminders, 1440) == 1

    def test_default_procedure_text(self, reminders, store, notifier, row):
        store.rows.append(row(status="Confirmado", procedure=""))
        _sweep_at(reminders, 1440)
        assert "sua avaliação" in notifier.texts[0][1]

    def test_no_operator_reminder_without_operator_phone(self, repository, store, notifier, row):
        reminders = ReminderScheduler(repository, notifier, operator_phone="", timezone="America/Sao_Paulo")
        store.rows.append(row(status="Confirmado"))

        asyncio.run(reminders.sweep(now=APPOINTMENT_AT - timedelta(minutes=1440)))
        assert [phone for phone, _ in notifier.texts] == ["5511987654321"]

    def test_marker_write_failure_is_not_fatal(self, reminders, store, row):
        store.rows.append(row(status="Confirmado"))

        async def _fail(*args, **kwargs):
            raise OSError("sheet unavailable")

        store.update_cell = _fail
        assert _sweep_at(reminders, 1440) == 1

    def test_store_read_failure_aborts_tick(self, reminders, store):
        async def _fail():
            raise OSError("sheet unavailable")

        store.query_all = _fail
        with pytest.raises(OSError):
            _sweep_at(reminders, 1440)


# ── Scheduler wiring ────────────────────────────────────────────────


class TestBuildScheduler:
    def test_registers_interval_job(self, reminders):
        scheduler = build_scheduler(reminders, interval_minutes=5, timezone="America/Sao_Paulo")

        job = scheduler.get_job(JOB_ID)
        assert job is not None
        assert isinstance(job.trigger, IntervalTrigger)
        assert job.trigger.interval == timedelta(minutes=5)
        assert job.coalesce is True
        assert job.max_instances == 1
