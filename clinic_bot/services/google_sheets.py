"""Google Sheets (v4 REST) implementation of the appointment store.

Sheets API docs: https://developers.google.com/sheets/api/reference/rest
"""

from __future__ import annotations

import logging
import re
from urllib.parse import quote

from clinic_bot.config import SHEET_NAME, SPREADSHEET_ID
from clinic_bot.services.google_api import GoogleAPIClient, GoogleAPIError

logger = logging.getLogger(__name__)

SHEETS_BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"
DATA_COLUMNS = "A:L"


def row_from_updated_range(updated_range: str | None) -> int | None:
    """Extract the row number from an ``updatedRange`` like ``Agenda!A7:L7``."""
    if not updated_range:
        return None
    match = re.search(r"![A-Z]+(\d+)(?::|$)", updated_range)
    if match:
        return int(match.group(1))
    trailing = re.search(r"(\d+)(?!.*\d)", updated_range)
    return int(trailing.group(1)) if trailing else None


class GoogleSheetsStore(GoogleAPIClient):
    """Row-oriented appointment table backed by one sheet tab."""

    service_name = "google_sheets"

    def __init__(
        self,
        spreadsheet_id: str | None = None,
        sheet_name: str | None = None,
        **kwargs,
    ):
        super().__init__(SHEETS_BASE_URL, **kwargs)
        self._spreadsheet_id = spreadsheet_id or SPREADSHEET_ID
        self._sheet_name = sheet_name or SHEET_NAME

    def _values_path(self, a1_range: str, suffix: str = "") -> str:
        if not self._spreadsheet_id:
            raise GoogleAPIError("SPREADSHEET_ID is not configured.")
        return f"/{self._spreadsheet_id}/values/{quote(a1_range, safe='!:')}{suffix}"

    @property
    def data_range(self) -> str:
        return f"{self._sheet_name}!{DATA_COLUMNS}"

    async def query_all(self) -> list[list[str]]:
        data = await self._request("GET", self._values_path(self.data_range))
        return data.get("values", [])

    async def append(self, row: list[str]) -> int | None:
        data = await self._request(
            "POST",
            self._values_path(self.data_range, ":append"),
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json_body={"values": [row]},
        )
        updated_range = data.get("updates", {}).get("updatedRange")
        row_number = row_from_updated_range(updated_range)
        logger.debug("Appended row %s (%s)", row_number, updated_range)
        return row_number

    async def update_cell(self, row_number: int, column: str, value: str) -> None:
        cell = f"{self._sheet_name}!{column}{row_number}"
        await self._request(
            "PUT",
            self._values_path(cell),
            params={"valueInputOption": "RAW"},
            json_body={"values": [[value]]},
        )
