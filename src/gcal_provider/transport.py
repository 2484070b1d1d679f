"""Authenticated JSON transport for the Google Calendar and Tasks APIs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from gcal_provider.config import DEFAULT_RATE_LIMIT_MAX_RETRIES, DEFAULT_REQUEST_TIMEOUT_SECONDS
from gcal_provider.errors import (
    DecodingError,
    RequestError,
    StaleSyncTokenError,
    TokenRefreshError,
    TransportError,
    WriteConflictError,
    sanitize_error_message,
)
from gcal_provider.host import TokenProvider

logger = logging.getLogger(__name__)

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"

RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}
RATE_LIMIT_BASE_BACKOFF_SECONDS = 1.0
CONFLICT_STATUS_CODES = {409, 412}
GONE_STATUS_CODE = 410
INVALID_JSON_MESSAGE = "invalid json response"

_DEFAULT_TOKEN_LIFETIME_SECONDS = 3600
# Tokens are renewed this long before Google says they expire.
_TOKEN_EXPIRY_MARGIN_SECONDS = 60
_MIN_TOKEN_LIFETIME_SECONDS = 30


@dataclass(frozen=True)
class ApiResponse:
    """Decoded 2xx response.  ``date`` is the server ``Date`` header, when sent."""

    status_code: int
    data: dict[str, Any] = field(default_factory=dict)
    date: datetime | None = None


@dataclass(frozen=True)
class _Call:
    method: str
    url: str
    params: dict[str, Any] | None = None
    json_body: dict[str, Any] | None = None
    headers: dict[str, str] | None = None


def _error_detail(response: httpx.Response) -> str:
    """Best human-readable reason from a Google error body, redacted."""
    try:
        body = response.json()
    except ValueError:
        body = None

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        error = error.get("message")
    if isinstance(error, str) and error.strip():
        return sanitize_error_message(error)

    text = response.text.strip()
    return sanitize_error_message(text) if text else f"HTTP {response.status_code}"


def _server_date(response: httpx.Response) -> datetime | None:
    header = response.headers.get("Date")
    if not header:
        return None
    try:
        value = parsedate_to_datetime(header)
    except (TypeError, ValueError):
        logger.debug("Ignoring unparseable Date header %r", header)
        return None
    return (value if value.tzinfo else value.replace(tzinfo=UTC)).astimezone(UTC)


def _token_lifetime(expires_in: Any) -> int:
    if isinstance(expires_in, int | float) and not isinstance(expires_in, bool) and expires_in > 0:
        return int(expires_in)
    return _DEFAULT_TOKEN_LIFETIME_SECONDS


class RefreshTokenProvider:
    """Exchanges a long-lived refresh token for short-lived access tokens.

    The current access token is cached until shortly before it expires.
    Concurrent callers share a single refresh.
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        http_client: httpx.AsyncClient,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._http_client = http_client
        self._token: str | None = None
        self._renew_at: datetime | None = None
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"RefreshTokenProvider(client_id={self._client_id!r})"

    def _cached(self) -> str | None:
        if self._token is not None and self._renew_at is not None:
            if datetime.now(UTC) < self._renew_at:
                return self._token
        return None

    async def get_access_token(self, *, force_refresh: bool = False) -> str:
        token = None if force_refresh else self._cached()
        if token is not None:
            return token
        async with self._lock:
            token = None if force_refresh else self._cached()
            if token is None:
                token = await self._exchange()
            return token

    async def invalidate(self) -> None:
        self._token = None
        self._renew_at = None

    async def _exchange(self) -> str:
        form = {
            "grant_type": "refresh_token",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": self._refresh_token,
        }
        try:
            response = await self._http_client.post(
                GOOGLE_OAUTH_TOKEN_URL, data=form, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as exc:
            raise TokenRefreshError(
                f"Token endpoint unreachable: {sanitize_error_message(str(exc))}"
            ) from exc

        if not response.is_success:
            raise TokenRefreshError(
                f"Token refresh rejected ({response.status_code}): {_error_detail(response)}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise TokenRefreshError("Token endpoint returned a non-JSON body") from exc
        if not isinstance(body, dict):
            body = {}

        token = body.get("access_token")
        if not isinstance(token, str) or not token.strip():
            raise TokenRefreshError("Token response has no usable access_token")

        lifetime = _token_lifetime(body.get("expires_in"))
        usable_for = max(lifetime - _TOKEN_EXPIRY_MARGIN_SECONDS, _MIN_TOKEN_LIFETIME_SECONDS)
        self._token = token.strip()
        self._renew_at = datetime.now(UTC) + timedelta(seconds=usable_for)
        logger.debug("Obtained Google access token valid for %ds", lifetime)
        return self._token


class GoogleSession:
    """Bearer-authenticated requests shared by every calendar of one account.

    Non-2xx answers are mapped onto the provider error taxonomy:
    410 raises ``StaleSyncTokenError``, 409/412 ``WriteConflictError`` and
    anything else ``RequestError``.  Transport failures raise
    ``TransportError`` and undecodable bodies ``DecodingError``.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        http_client: httpx.AsyncClient | None = None,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_RATE_LIMIT_MAX_RETRIES,
        backoff_seconds: float = RATE_LIMIT_BASE_BACKOFF_SECONDS,
    ) -> None:
        self._tokens = token_provider
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._client

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> ApiResponse:
        call = _Call(method, url, params, json_body, headers)
        response = await self._send_with_retries(call)
        return self._decode(call, response)

    def _decode(self, call: _Call, response: httpx.Response) -> ApiResponse:
        status = response.status_code
        if not response.is_success:
            detail = _error_detail(response)
            logger.debug("%s %s answered %d: %s", call.method, call.url, status, detail)
            if status == GONE_STATUS_CODE:
                raise StaleSyncTokenError(detail)
            if status in CONFLICT_STATUS_CODES:
                raise WriteConflictError(status_code=status, message=detail)
            raise RequestError(status_code=status, message=detail)

        date = _server_date(response)
        if not response.content.strip():
            return ApiResponse(status_code=status, date=date)
        try:
            data = response.json()
        except ValueError as exc:
            raise DecodingError(INVALID_JSON_MESSAGE) from exc
        if not isinstance(data, dict):
            raise DecodingError(f"{INVALID_JSON_MESSAGE}: expected a JSON object")
        return ApiResponse(status_code=status, data=data, date=date)

    def _retry_delay(self, response: httpx.Response, attempt: int) -> float:
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            if retry_after is not None:
                try:
                    return float(retry_after)
                except ValueError:
                    logger.debug("Ignoring non-numeric Retry-After %r", retry_after)
        return self._backoff_seconds * 2**attempt

    async def _send_with_retries(self, call: _Call) -> httpx.Response:
        response = await self._send_authorized(call)
        attempt = 0
        while response.status_code in RATE_LIMIT_RETRY_STATUS_CODES and attempt < self._max_retries:
            delay = self._retry_delay(response, attempt)
            attempt += 1
            logger.warning(
                "Google API throttled %s %s (%d); retry %d/%d in %.1fs",
                call.method,
                call.url,
                response.status_code,
                attempt,
                self._max_retries,
                delay,
            )
            await asyncio.sleep(delay)
            response = await self._send_authorized(call)
        return response

    async def _send_authorized(self, call: _Call) -> httpx.Response:
        response = await self._send(call, force_refresh=False)
        if response.status_code == 401:
            logger.info("Access token rejected, refreshing")
            await self._tokens.invalidate()
            response = await self._send(call, force_refresh=True)
        return response

    async def _send(self, call: _Call, *, force_refresh: bool) -> httpx.Response:
        token = await self._tokens.get_access_token(force_refresh=force_refresh)
        headers = {"Authorization": f"Bearer {token}", **(call.headers or {})}
        try:
            return await self._client.request(
                call.method, call.url, params=call.params, json=call.json_body, headers=headers
            )
        except httpx.HTTPError as exc:
            raise TransportError(
                f"{call.method} {call.url} failed: {sanitize_error_message(str(exc))}"
            ) from exc
