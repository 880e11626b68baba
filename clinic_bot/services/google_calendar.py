"""Google Calendar (v3 REST) gateway.

Write methods never raise: a failed create/patch returns ``None`` and a
failed delete returns ``False``, so the calling flow can carry on with the
spreadsheet update and the reply to the patient.  ``list_events`` does raise,
because availability without the calendar is meaningless.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Protocol
from urllib.parse import quote

from clinic_bot.config import CALENDAR_ID, TIMEZONE
from clinic_bot.services.google_api import GoogleAPIClient, GoogleAPIError

logger = logging.getLogger(__name__)

CALENDAR_BASE_URL = "https://www.googleapis.com/calendar/v3"


class CalendarGateway(Protocol):
    async def create_event(
        self, summary: str, description: str, start: datetime, end: datetime, color_id: str,
    ) -> str | None: ...

    async def patch_event(self, event_id: str, summary: str, color_id: str) -> str | None: ...

    async def delete_event(self, event_id: str) -> bool: ...

    async def list_events(self, time_min: datetime, time_max: datetime) -> list[dict[str, Any]]: ...


class GoogleCalendarClient(GoogleAPIClient):
    service_name = "google_calendar"

    def __init__(self, calendar_id: str | None = None, *, timezone: str = TIMEZONE, **kwargs):
        super().__init__(CALENDAR_BASE_URL, **kwargs)
        self._calendar_id = calendar_id or CALENDAR_ID
        self._timezone = timezone

    def _events_path(self, event_id: str = "") -> str:
        if not self._calendar_id:
            raise GoogleAPIError("CALENDAR_ID is not configured.")
        path = f"/calendars/{quote(self._calendar_id, safe='')}/events"
        return f"{path}/{quote(event_id, safe='')}" if event_id else path

    async def create_event(
        self,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        color_id: str,
    ) -> str | None:
        body = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start.isoformat(), "timeZone": self._timezone},
            "end": {"dateTime": end.isoformat(), "timeZone": self._timezone},
            "colorId": color_id,
        }
        try:
            data = await self._request("POST", self._events_path(), json_body=body)
        except GoogleAPIError as exc:
            logger.warning("Failed to create calendar event: %s", exc)
            return None
        event_id = data.get("id")
        logger.info("Calendar event created: %s", event_id)
        return event_id

    async def patch_event(self, event_id: str, summary: str, color_id: str) -> str | None:
        """Change only the title and color of an existing event."""
        if not event_id:
            return None
        try:
            data = await self._request(
                "PATCH",
                self._events_path(event_id),
                json_body={"summary": summary, "colorId": color_id},
            )
        except GoogleAPIError as exc:
            logger.warning("Failed to patch calendar event %s: %s", event_id, exc)
            return None
        logger.info("Calendar event %s patched (%s)", event_id, summary)
        return data.get("id", event_id)

    async def delete_event(self, event_id: str) -> bool:
        if not event_id:
            return False
        try:
            await self._request("DELETE", self._events_path(event_id))
        except GoogleAPIError as exc:
            logger.warning("Failed to delete calendar event %s: %s", event_id, exc)
            return False
        logger.info("Calendar event %s deleted", event_id)
        return True

    async def list_events(self, time_min: datetime, time_max: datetime) -> list[dict[str, Any]]:
        data = await self._request(
            "GET",
            self._events_path(),
            params={
                "timeMin": time_min.isoformat(),
                "timeMax": time_max.isoformat(),
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        return data.get("items", [])
