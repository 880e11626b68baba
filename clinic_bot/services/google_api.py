"""Shared async HTTP plumbing for the Google Sheets and Calendar REST APIs:
service-account tokens, exponential-backoff retries and bounded timeouts.

Tokens come from a service account, loaded either from the JSON key file
(``GOOGLE_APPLICATION_CREDENTIALS``) or from ``GOOGLE_CLIENT_EMAIL`` +
``GOOGLE_PRIVATE_KEY``.  ``google-auth`` refreshes them; the refresh is a
blocking call so it runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from clinic_bot.config import (
    GOOGLE_APPLICATION_CREDENTIALS,
    GOOGLE_CLIENT_EMAIL,
    GOOGLE_PRIVATE_KEY,
    REQUEST_TIMEOUT_SECONDS,
)
from clinic_bot.services.metrics import metrics

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/calendar",
]
TOKEN_URI = "https://oauth2.googleapis.com/token"

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0


class GoogleAPIError(Exception):
    """Raised when a Google API call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def load_service_account_info(
    credentials_file: str | None = None,
    client_email: str | None = None,
    private_key: str | None = None,
) -> dict[str, Any] | None:
    """Build service-account info from env values, falling back to the key file.

    Returns ``None`` when neither source is usable.
    """
    client_email = client_email if client_email is not None else GOOGLE_CLIENT_EMAIL
    private_key = private_key if private_key is not None else GOOGLE_PRIVATE_KEY
    credentials_file = credentials_file or GOOGLE_APPLICATION_CREDENTIALS

    info: dict[str, Any] = {}
    path = Path(credentials_file) if credentials_file else None
    if path and path.exists():
        try:
            info = json.loads(path.read_text(encoding="utf-8"))
            logger.info("Google credentials loaded from %s", path)
        except (OSError, ValueError) as exc:
            logger.warning("Could not read Google credentials file %s: %s", path, exc)

    client_email = client_email or info.get("client_email", "")
    private_key = private_key or info.get("private_key", "")
    if not client_email or not private_key:
        return None

    # Keys pasted into env vars often keep quotes and literal "\n".
    private_key = private_key.strip().strip("'\"").replace("\\n", "\n")
    info.update(
        {
            "type": "service_account",
            "client_email": client_email,
            "private_key": private_key,
            "token_uri": info.get("token_uri", TOKEN_URI),
        }
    )
    return info


class ServiceAccountTokenProvider:
    """Hands out bearer tokens, refreshing them when they expire."""

    def __init__(self, info: dict[str, Any] | None = None, scopes: list[str] | None = None):
        info = info if info is not None else load_service_account_info()
        self._credentials = (
            service_account.Credentials.from_service_account_info(info, scopes=scopes or SCOPES)
            if info
            else None
        )
        self._lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return self._credentials is not None

    async def get_token(self) -> str:
        if self._credentials is None:
            raise GoogleAPIError("Google service-account credentials are not configured.")
        async with self._lock:
            if not self._credentials.valid:
                try:
                    await asyncio.to_thread(self._credentials.refresh, GoogleAuthRequest())
                except GoogleAuthError as exc:
                    raise GoogleAPIError(f"Google token refresh failed: {exc}") from exc
        return self._credentials.token


class GoogleAPIClient:
    """Async httpx wrapper with automatic retries for one Google API."""

    service_name = "google"

    def __init__(
        self,
        base_url: str,
        *,
        token_provider: ServiceAccountTokenProvider | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self._tokens = token_provider or ServiceAccountTokenProvider()
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute an HTTP request with exponential-backoff retries.

        Timeouts, connection errors and 5xx responses are retried; 4xx
        responses raise immediately.  Empty bodies (e.g. ``204``) yield ``{}``.
        """
        headers = {"Authorization": f"Bearer {await self._tokens.get_token()}"}
        operation = f"{method} {path.split('?')[0]}"
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = await self._client.request(
                    method, path, params=params, json=json_body, headers=headers,
                )
                elapsed = (time.perf_counter() - t0) * 1000
                if response.status_code >= 400:
                    kind = "Server" if response.status_code >= 500 else "Client"
                    metrics.record_call(
                        self.service_name, operation, elapsed,
                        error_type=f"http_{response.status_code}",
                    )
                    raise GoogleAPIError(
                        f"{kind} error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                metrics.record_call(self.service_name, operation, elapsed)
                if response.status_code == 204 or not response.content:
                    return {}
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                metrics.record_call(
                    self.service_name, operation, 0, error_type=type(exc).__name__,
                )
                logger.warning(
                    "%s attempt %d/%d failed (%s). Retrying in %.1fs…",
                    self.service_name,
                    attempt,
                    MAX_RETRIES,
                    type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except GoogleAPIError as exc:
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "%s server error on attempt %d/%d. Retrying…",
                        self.service_name,
                        attempt,
                        MAX_RETRIES,
                    )
                else:
                    raise  # 4xx errors are not retried

            backoff = INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1))
            await asyncio.sleep(backoff)

        raise GoogleAPIError(
            f"{self.service_name} request failed after {MAX_RETRIES} retries: {last_error}"
        )
