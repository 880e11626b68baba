"""Reminder sweep: 24h and 2h WhatsApp reminders for Confirmed appointments.

The sweep is a poll over the whole sheet.  Every tick it recomputes, for each
Confirmed row, the minutes left until the appointment and fires a milestone
when that lands within ±tolerance of 1440 (24h) or 120 (2h) and the row's
client marker (column J) is still below that milestone.  Markers only move
forward, which is what keeps a reminder from going out twice even though a
5-minute tick hits each 20-minute window several times.

Scheduling uses APScheduler's ``AsyncIOScheduler`` so the job shares the
FastAPI event loop.
"""

from __future__ import annotations

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from clinic_bot import messages
from clinic_bot.appointments import AppointmentRepository
from clinic_bot.config import (
    DENTIST_PHONE,
    REMINDER_INTERVAL_MINUTES,
    REMINDER_TOLERANCE_MINUTES,
    TIMEZONE,
)
from clinic_bot.models import Appointment, AppointmentStatus, NotifiedMilestone
from clinic_bot.notifications import NotificationGateway
from clinic_bot.scheduling import parse_local_datetime
from clinic_bot.services.metrics import metrics

logger = logging.getLogger(__name__)

JOB_ID = "appointment_reminders"

# Minutes before the appointment at which each milestone is due
MILESTONE_TARGETS = {
    NotifiedMilestone.REMINDED_24H: 24 * 60,
    NotifiedMilestone.REMINDED_2H: 2 * 60,
}


def minutes_until(appointment_at: datetime, now: datetime) -> int:
    return round((appointment_at - now).total_seconds() / 60)


def due_milestone(
    delta_minutes: int,
    current: NotifiedMilestone,
    tolerance: int = REMINDER_TOLERANCE_MINUTES,
) -> NotifiedMilestone | None:
    """The milestone to fire now, if any."""
    for milestone, target in MILESTONE_TARGETS.items():
        if abs(delta_minutes - target) <= tolerance and current < milestone:
            return milestone
    return None


class ReminderScheduler:
    """Runs one sweep per tick; see :func:`build_scheduler` for the timer."""

    def __init__(
        self,
        repository: AppointmentRepository,
        notifier: NotificationGateway,
        *,
        tolerance_minutes: int = REMINDER_TOLERANCE_MINUTES,
        timezone: str = TIMEZONE,
        operator_phone: str | None = None,
    ):
        self._repo = repository
        self._notifier = notifier
        self._tolerance = tolerance_minutes
        self._timezone = timezone
        self._operator_phone = operator_phone if operator_phone is not None else DENTIST_PHONE

    async def sweep(self, now: datetime | None = None) -> int:
        """Scan every row once; return how many reminders were fired.

        A failure to read the store propagates (the tick is abandoned and the
        scheduler listener logs it).  Rows with missing or malformed data
        are skipped.
        """
        now = now or datetime.now(ZoneInfo(self._timezone))
        fired = 0
        for appt in await self._repo.all():
            if not appt.id or appt.status is not AppointmentStatus.CONFIRMED:
                continue
            if not appt.date or not appt.time:
                continue
            try:
                appointment_at = parse_local_datetime(appt.date, appt.time, self._timezone)
            except ValueError:
                logger.debug("Skipping row %d: bad date/time %r %r", appt.row_number, appt.date, appt.time)
                continue

            milestone = due_milestone(minutes_until(appointment_at, now), appt.milestone, self._tolerance)
            if milestone is None:
                continue
            await self._fire(appt, milestone)
            fired += 1

        if fired:
            logger.info("Reminder sweep fired %d reminder(s)", fired)
        return fired

    async def _fire(self, appt: Appointment, milestone: NotifiedMilestone) -> None:
        if milestone is NotifiedMilestone.REMINDED_24H:
            patient_text = messages.patient_reminder_24h(appt)
            operator_text = messages.operator_reminder_24h(appt)
        else:
            patient_text = messages.patient_reminder_2h(appt)
            operator_text = messages.operator_reminder_2h(appt)

        await self._notifier.send_text(appt.phone, patient_text)
        if self._operator_phone:
            await self._notifier.send_text(self._operator_phone, operator_text)
        await self._repo.mark_notified(appt, milestone)

        metrics.record_event("reminder_sent", outcome=milestone.name.lower())
        logger.info("%s reminder sent for row %d (%s)", milestone.name, appt.row_number, appt.patient_name)


def _log_job_state(scheduler: AsyncIOScheduler, event: JobExecutionEvent) -> None:
    job = scheduler.get_job(event.job_id)
    job_next_run = getattr(job, "next_run_time", None) if job else None
    next_run = job_next_run.isoformat() if job_next_run else "none"

    if event.exception:
        logger.error(
            "Job %s failed; next run at %s", event.job_id, next_run, exc_info=event.exception,
        )
        return
    logger.debug("Job %s completed (%s fired); next run at %s", event.job_id, event.retval, next_run)


def build_scheduler(
    reminders: ReminderScheduler,
    *,
    interval_minutes: int = REMINDER_INTERVAL_MINUTES,
    timezone: str = TIMEZONE,
) -> AsyncIOScheduler:
    """Build (but do not start) the scheduler that runs the reminder sweep."""
    tz = ZoneInfo(timezone)
    scheduler = AsyncIOScheduler(timezone=tz)
    scheduler.add_job(
        reminders.sweep,
        trigger=IntervalTrigger(minutes=interval_minutes, timezone=tz),
        id=JOB_ID,
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_listener(
        lambda event: _log_job_state(scheduler, event),
        EVENT_JOB_EXECUTED | EVENT_JOB_ERROR,
    )
    logger.info("Registered %s every %d minutes (%s)", JOB_ID, interval_minutes, tz.key)
    return scheduler
