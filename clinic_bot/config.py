"""Centralized configuration for the clinic scheduling bot.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/clinic-bot/<VARIABLE_NAME>``.

Nothing here is hard-required: a missing Google, WhatsApp or e-mail setting
only disables the collaborator that needs it, and a warning is logged.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 (only needed on AWS)

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/clinic-bot/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _get_secret(name: str, default: str = "") -> str:
    """Return a config value from env-var or SSM, else *default*."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value.strip()

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value.strip()

    return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _get_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# ── Google Sheets / Calendar ────────────────────────────────────────
SPREADSHEET_ID: str = _get_secret("SPREADSHEET_ID")
SHEET_NAME: str = os.getenv("SHEET_NAME", "cadastro_agenda").strip()
CALENDAR_ID: str = _get_secret("CALENDAR_ID")
GOOGLE_APPLICATION_CREDENTIALS: str = os.getenv(
    "GOOGLE_APPLICATION_CREDENTIALS", "gcp-service-account.json",
)
GOOGLE_CLIENT_EMAIL: str = _get_secret("GOOGLE_CLIENT_EMAIL")
GOOGLE_PRIVATE_KEY: str = _get_secret("GOOGLE_PRIVATE_KEY")
REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "15"))

# ── Clinic ──────────────────────────────────────────────────────────
DENTIST_NAME: str = os.getenv("DENTIST_NAME", "Dra. Marcella")
DENTIST_EMAIL: str = _get_secret("DENTIST_EMAIL")
DENTIST_PHONE: str = _get_secret("DENTIST_PHONE")
BOOKING_LINK: str = (
    os.getenv("BOOKING_LINK", "https://dramarcellamardegan.com.br").replace('"', "").replace("'", "")
)
CONSULTATION_MINUTES: int = int(os.getenv("CONSULTATION_MINUTES", "30"))
OFFICE_HOURS: list[str] = _get_list("OFFICE_HOURS", "17:30,18:00,18:30,19:00,19:30,20:00")
TIMEZONE: str = os.getenv("TIMEZONE", "America/Sao_Paulo")

# Fail the booking request when the spreadsheet write fails, instead of
# reporting success with a missing row.
STRICT_BOOKING_WRITES: bool = _get_bool("STRICT_BOOKING_WRITES", False)

# ── Reminders ───────────────────────────────────────────────────────
REMINDERS_ENABLED: bool = _get_bool("REMINDERS_ENABLED", True)
REMINDER_INTERVAL_MINUTES: int = int(os.getenv("REMINDER_INTERVAL_MINUTES", "5"))
REMINDER_TOLERANCE_MINUTES: int = int(os.getenv("REMINDER_TOLERANCE_MINUTES", "10"))

# ── WhatsApp HTTP bridge ────────────────────────────────────────────
WHATSAPP_API_URL: str = os.getenv("WHATSAPP_API_URL", "http://localhost:3000")
WHATSAPP_API_KEY: str = _get_secret("WHATSAPP_API_KEY")
WHATSAPP_SESSION: str = os.getenv("WHATSAPP_SESSION", "default")

# ── E-mail (SMTP) ───────────────────────────────────────────────────
EMAIL_USER: str = _get_secret("EMAIL_USER")
EMAIL_PASS: str = _get_secret("EMAIL_PASS")
SMTP_HOST: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "4000"))
CORS_ORIGINS: list[str] = _get_list("CORS_ORIGINS", "*")

if not SPREADSHEET_ID or not CALENDAR_ID or not DENTIST_EMAIL:
    logger.warning(
        "SPREADSHEET_ID, CALENDAR_ID or DENTIST_EMAIL is not configured; "
        "Sheets, Calendar or e-mail features may fail.",
    )
