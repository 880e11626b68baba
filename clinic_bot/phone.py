"""Canonical phone numbers for matching WhatsApp senders to spreadsheet rows."""

from __future__ import annotations

import re

COUNTRY_CODE = "55"
CHAT_SUFFIX = "@c.us"


def normalize_phone(raw: str | None) -> str:
    """Return the digit-only phone prefixed with the Brazilian country code.

    Local numbers (10 or 11 digits: area code + number) get ``55`` prepended;
    anything else not already starting with ``55`` gets it too.  Running it
    twice is a no-op.  Empty input yields ``""``.
    """
    if not raw:
        return ""
    digits = re.sub(r"\D", "", str(raw))
    if not digits:
        return ""
    if len(digits) in (10, 11):
        digits = COUNTRY_CODE + digits
    if not digits.startswith(COUNTRY_CODE):
        digits = COUNTRY_CODE + digits
    return digits


def chat_id(phone: str) -> str:
    """WhatsApp recipient id for *phone* (``5511987654321@c.us``)."""
    canonical = normalize_phone(phone)
    return f"{canonical}{CHAT_SUFFIX}" if canonical else ""


def phone_from_chat_id(sender: str) -> str:
    """Inverse of :func:`chat_id`; tolerates any ``@server`` suffix."""
    return normalize_phone(sender.split("@", 1)[0] if sender else "")


def is_group_chat(sender: str) -> bool:
    return bool(sender) and sender.endswith("@g.us")
