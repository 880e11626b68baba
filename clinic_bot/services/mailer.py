"""SMTP e-mail transport.

``smtplib`` is blocking, so each send runs in a worker thread.  The mailer
is *disabled* (``enabled == False``) unless both ``EMAIL_USER`` and
``EMAIL_PASS`` are set; callers check that before sending.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import time
from email.message import EmailMessage

from clinic_bot.config import EMAIL_PASS, EMAIL_USER, REQUEST_TIMEOUT_SECONDS, SMTP_HOST, SMTP_PORT
from clinic_bot.services.metrics import metrics

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(
        self,
        user: str | None = None,
        password: str | None = None,
        host: str | None = None,
        port: int | None = None,
        *,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self._user = user if user is not None else EMAIL_USER
        self._password = password if password is not None else EMAIL_PASS
        self._host = host or SMTP_HOST
        self._port = port or SMTP_PORT
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self._user and self._password)

    def _build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        if "\r" in to or "\n" in to:
            raise ValueError(f"Invalid recipient address: {to!r}")
        msg = EmailMessage()
        msg["From"] = self._user
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        return msg

    def _send_blocking(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            if self._port == 587:
                server.starttls()
            server.login(self._user, self._password)
            server.send_message(msg)

    async def send(self, to: str, subject: str, body: str) -> None:
        """Send one plain-text e-mail.

        Raises ``smtplib.SMTPException``/``OSError`` on transport errors and
        ``ValueError`` when a header (e.g. a recipient with a line break) is
        malformed.
        """
        t0 = time.perf_counter()
        try:
            msg = self._build_message(to, subject, body)
            await asyncio.to_thread(self._send_blocking, msg)
        except (smtplib.SMTPException, OSError, ValueError) as exc:
            metrics.record_call(
                "smtp", "send", (time.perf_counter() - t0) * 1000, error_type=type(exc).__name__,
            )
            raise
        metrics.record_call("smtp", "send", (time.perf_counter() - t0) * 1000)
        logger.info("E-mail sent to %s (%s)", to, subject)
