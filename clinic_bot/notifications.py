"""Notification gateway: WhatsApp texts and e-mails, both best-effort.

Neither method raises.  ``send_text`` reports delivery with a boolean and
skips the send entirely while the channel is not connected; ``send_email``
logs failures and returns.  A failed notification must never undo or block
the spreadsheet update or the reply to the patient.
"""

from __future__ import annotations

import logging
from typing import Protocol

from clinic_bot.config import DENTIST_EMAIL, DENTIST_PHONE
from clinic_bot.phone import chat_id, normalize_phone
from clinic_bot.services.mailer import Mailer
from clinic_bot.services.whatsapp import WhatsAppChannel, WhatsAppError

logger = logging.getLogger(__name__)


class NotificationGateway(Protocol):
    @property
    def email_enabled(self) -> bool: ...

    async def send_text(self, phone: str, message: str) -> bool: ...

    async def send_email(self, to: str, subject: str, body: str) -> None: ...

    async def notify_operator(self, message: str, subject: str | None = None) -> None: ...


class Notifier:
    """Concrete gateway over a :class:`WhatsAppChannel` and a :class:`Mailer`."""

    def __init__(
        self,
        channel: WhatsAppChannel,
        mailer: Mailer | None = None,
        *,
        operator_phone: str | None = None,
        operator_email: str | None = None,
    ):
        self._channel = channel
        self._mailer = mailer or Mailer()
        self._operator_phone = operator_phone if operator_phone is not None else DENTIST_PHONE
        self._operator_email = operator_email if operator_email is not None else DENTIST_EMAIL

    @property
    def email_enabled(self) -> bool:
        return self._mailer.enabled

    async def send_text(self, phone: str, message: str) -> bool:
        if not self._channel.is_connected:
            logger.warning(
                "WhatsApp not connected (status=%s); skipping message to %s",
                self._channel.status.value, phone,
            )
            return False
        canonical = normalize_phone(phone)
        if not canonical:
            logger.warning("Invalid phone %r; message not sent", phone)
            return False
        try:
            await self._channel.send_text(chat_id(canonical), message)
        except WhatsAppError as exc:
            logger.error("Failed to send WhatsApp message to %s: %s", canonical, exc)
            return False
        logger.info("WhatsApp message sent to %s", canonical)
        return True

    async def send_email(self, to: str, subject: str, body: str) -> None:
        if not self._mailer.enabled or not to:
            return
        try:
            await self._mailer.send(to, subject, body)
        except Exception as exc:
            logger.warning("E-mail to %s failed (non-critical): %s", to, exc)

    async def notify_operator(self, message: str, subject: str | None = None) -> None:
        """WhatsApp the clinic operator and, when *subject* is given, e-mail too."""
        if self._operator_phone:
            await self.send_text(self._operator_phone, message)
        if subject and self._operator_email:
            await self.send_email(self._operator_email, subject, message)
