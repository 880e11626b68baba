"""Calendar math: event windows, status-tagged titles and free-slot lookup.

Dates in the sheet are ``DD/MM/YYYY`` and times ``HH:MM``, both local to the
clinic's time zone.  Everything here returns timezone-aware datetimes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from clinic_bot.config import CONSULTATION_MINUTES, TIMEZONE
from clinic_bot.models import AppointmentStatus

# Google Calendar colorId values
COLOR_CONFIRMED = "2"   # sage / green
COLOR_CANCELLED = "11"  # tomato / red
COLOR_OTHER = "5"       # banana

EVENT_TITLE = "Avaliação"


@dataclass(frozen=True, slots=True)
class EventWindow:
    start: datetime
    end: datetime


def parse_local_datetime(date_text: str, time_text: str, tz_name: str = TIMEZONE) -> datetime:
    """Combine ``DD/MM/YYYY`` and ``HH:MM`` into an aware datetime.

    Raises ``ValueError`` for anything that does not parse.
    """
    parts = str(date_text).strip().split("/")
    if len(parts) != 3:
        raise ValueError(f"Unparseable date: {date_text!r}")
    day, month, year = (int(p) for p in parts)
    hour_text, _, minute_text = str(time_text).strip().partition(":")
    hour, minute = int(hour_text), int(minute_text)
    return datetime(year, month, day, hour, minute, tzinfo=ZoneInfo(tz_name))


def event_window(
    date_text: str,
    time_text: str,
    *,
    duration_minutes: int = CONSULTATION_MINUTES,
    tz_name: str = TIMEZONE,
) -> EventWindow:
    start = parse_local_datetime(date_text, time_text, tz_name)
    return EventWindow(start=start, end=start + timedelta(minutes=duration_minutes))


def event_summary(patient_name: str, status: AppointmentStatus) -> str:
    return f"[{status.value.upper()}] {EVENT_TITLE} - {patient_name}"


def event_color(status: AppointmentStatus) -> str:
    if status is AppointmentStatus.CONFIRMED:
        return COLOR_CONFIRMED
    if status is AppointmentStatus.CANCELLED:
        return COLOR_CANCELLED
    return COLOR_OTHER


def is_cancelled_event(event: dict[str, Any]) -> bool:
    prefix = f"[{AppointmentStatus.CANCELLED.value.upper()}]"
    return str(event.get("summary", "")).startswith(prefix)


def day_bounds(day: date, tz_name: str = TIMEZONE) -> tuple[datetime, datetime]:
    """Local midnight to the last microsecond of *day*."""
    tz = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day, time.max, tzinfo=tz)
    return start, end


def busy_slots(
    events: list[dict[str, Any]],
    *,
    duration_minutes: int = CONSULTATION_MINUTES,
    tz_name: str = TIMEZONE,
) -> set[str]:
    """``HH:MM`` labels touched by the given Google Calendar events.

    Each timed event is walked from its start in consultation-sized steps up
    to and including its end, so the slot starting right when an event ends
    is also blocked.  Events tagged ``[CANCELADO]`` and all-day events are
    ignored.
    """
    tz = ZoneInfo(tz_name)
    step = timedelta(minutes=duration_minutes)
    busy: set[str] = set()
    for event in events:
        if is_cancelled_event(event):
            continue
        start_raw = (event.get("start") or {}).get("dateTime")
        end_raw = (event.get("end") or {}).get("dateTime")
        if not start_raw or not end_raw:
            continue
        current = datetime.fromisoformat(start_raw.replace("Z", "+00:00")).astimezone(tz)
        end = datetime.fromisoformat(end_raw.replace("Z", "+00:00")).astimezone(tz)
        while current <= end:
            busy.add(current.strftime("%H:%M"))
            current += step
    return busy


def available_slots(
    office_hours: list[str],
    events: list[dict[str, Any]],
    *,
    duration_minutes: int = CONSULTATION_MINUTES,
    tz_name: str = TIMEZONE,
) -> list[str]:
    """The office-hour slots not occupied by any event, in original order."""
    busy = busy_slots(events, duration_minutes=duration_minutes, tz_name=tz_name)
    return [slot for slot in office_hours if slot not in busy]
