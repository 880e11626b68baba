"""Client for a WhatsApp HTTP bridge (a WAHA-style gateway in front of
WhatsApp Web).

The bridge owns the WhatsApp Web session and pairing; this client only
sends text, asks for the session status and fetches the pairing QR code.
Inbound messages arrive through the webhook route (``/api/whatsapp/webhook``)
and every session event received there updates :attr:`WhatsAppChannel.status`.

Bridge endpoints used:
  * ``POST /api/sendText``               — ``{session, chatId, text}``
  * ``GET  /api/sessions/{session}``     — ``{status: WORKING|SCAN_QR_CODE|…}``
  * ``GET  /api/{session}/auth/qr``      — PNG of the pairing QR code
"""

from __future__ import annotations

import base64
import logging
import time
from enum import Enum

import httpx

from clinic_bot.config import (
    REQUEST_TIMEOUT_SECONDS,
    WHATSAPP_API_KEY,
    WHATSAPP_API_URL,
    WHATSAPP_SESSION,
)
from clinic_bot.services.metrics import metrics

logger = logging.getLogger(__name__)


class ChannelStatus(str, Enum):
    LOADING = "loading"
    QR_CODE = "qr_code"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


# Bridge session states → public channel status
_BRIDGE_STATUS = {
    "STARTING": ChannelStatus.LOADING,
    "SCAN_QR_CODE": ChannelStatus.QR_CODE,
    "WORKING": ChannelStatus.CONNECTED,
    "STOPPED": ChannelStatus.DISCONNECTED,
    "FAILED": ChannelStatus.ERROR,
}


class WhatsAppError(Exception):
    """Raised when the bridge rejects a request or cannot be reached."""


def map_bridge_status(raw: str | None) -> ChannelStatus:
    return _BRIDGE_STATUS.get(str(raw or "").upper(), ChannelStatus.ERROR)


class WhatsAppChannel:
    """Outbound side of the messaging channel plus connection bookkeeping."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        session: str | None = None,
        *,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        headers = {"Content-Type": "application/json"}
        api_key = api_key if api_key is not None else WHATSAPP_API_KEY
        if api_key:
            headers["X-Api-Key"] = api_key
        self._session = session or WHATSAPP_SESSION
        self._client = httpx.AsyncClient(
            base_url=base_url or WHATSAPP_API_URL, headers=headers, timeout=timeout,
        )
        self.status: ChannelStatus = ChannelStatus.LOADING
        self.qr_code: str | None = None

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def is_connected(self) -> bool:
        return self.status is ChannelStatus.CONNECTED

    def update_status(self, status: ChannelStatus) -> None:
        if status is not self.status:
            logger.info("WhatsApp channel status: %s → %s", self.status.value, status.value)
        self.status = status
        if status is ChannelStatus.CONNECTED:
            self.qr_code = None

    async def refresh_status(self) -> ChannelStatus:
        """Ask the bridge for the session state (and the QR code if pairing)."""
        try:
            response = await self._client.get(f"/api/sessions/{self._session}")
            response.raise_for_status()
            self.update_status(map_bridge_status(response.json().get("status")))
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("WhatsApp status check failed: %s", exc)
            self.update_status(ChannelStatus.ERROR)
            return self.status

        if self.status is ChannelStatus.QR_CODE:
            self.qr_code = await self._fetch_qr_code()
        return self.status

    async def _fetch_qr_code(self) -> str | None:
        """Pairing QR as a ``data:image/png;base64,…`` URL."""
        try:
            response = await self._client.get(
                f"/api/{self._session}/auth/qr", headers={"Accept": "image/png"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Could not fetch WhatsApp QR code: %s", exc)
            return None
        return "data:image/png;base64," + base64.b64encode(response.content).decode("ascii")

    async def send_text(self, recipient: str, text: str) -> None:
        """Send *text* to a chat id (``5511…@c.us``). Raises ``WhatsAppError``."""
        t0 = time.perf_counter()
        try:
            response = await self._client.post(
                "/api/sendText",
                json={"session": self._session, "chatId": recipient, "text": text},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            metrics.record_call(
                "whatsapp", "sendText", (time.perf_counter() - t0) * 1000,
                error_type=type(exc).__name__,
            )
            raise WhatsAppError(f"sendText to {recipient} failed: {exc}") from exc
        metrics.record_call("whatsapp", "sendText", (time.perf_counter() - t0) * 1000)
