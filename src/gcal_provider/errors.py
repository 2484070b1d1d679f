"""Error taxonomy for the Google Calendar provider.

Recoverable conditions (``StaleSyncTokenError``, ``StalePreferenceWindowError``)
are handled inside the sync orchestrator. Everything else propagates to the
host as a typed failure.
"""

from __future__ import annotations

import re


class ProviderError(RuntimeError):
    """Base error raised by the provider."""


class UnsupportedCalendarKindError(ProviderError):
    """Raised when a calendar registration is not a Google calendar."""

    def __init__(self, kind: str | None) -> None:
        self.kind = kind
        super().__init__(f"invalid calendar type: {kind}")


class CalendarNotFoundError(ProviderError):
    """Raised when the host has no registration for a calendar id."""


class UnresolvedAddressError(ProviderError):
    """Raised when a calendar has no usable remote collection address."""


class UnknownItemKindError(ProviderError):
    """Raised when an item is neither an event nor a task."""

    def __init__(self, kind: str | None) -> None:
        self.kind = kind
        super().__init__(f"Unknown item type: {kind}")


class StaleSyncTokenError(ProviderError):
    """Raised on 410 Gone; the stored sync token is no longer valid."""


class StalePreferenceWindowError(ProviderError):
    """Raised when the stored tasks ``updatedMin`` floor is past the freshness horizon."""


class WriteConflictError(ProviderError):
    """Raised when a conditional write fails the ``If-Match`` precondition."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Write conflict ({status_code}): {message}")


class TransportOrDecodingFailure(ProviderError):
    """Base for failures that abort the current sync pass."""


class TransportError(TransportOrDecodingFailure):
    """Raised when the HTTP transport itself fails."""


class DecodingError(TransportOrDecodingFailure):
    """Raised when a successful response body is not a JSON object."""


class RequestError(TransportOrDecodingFailure):
    """Raised when the Google API answers with a non-2xx status."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Google API request failed ({status_code}): {message}")


class TokenRefreshError(ProviderError):
    """Raised when the refresh-token exchange fails."""


_SECRET_PATTERNS = (
    (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/=-]+"), "Bearer [REDACTED]"),
    (
        re.compile(r"(?i)\b(client_secret|refresh_token|access_token)\s*[=:]\s*([^\s,;&]+)"),
        r"\1=[REDACTED]",
    ),
)


def redact_secrets(message: str) -> str:
    """Strip bearer tokens and OAuth secrets from *message*."""
    redacted = message
    for pattern, replacement in _SECRET_PATTERNS:
        redacted = pattern.sub(replacement, redacted)
    return redacted


def sanitize_error_message(message: str, *, limit: int = 200) -> str:
    """Redact, collapse whitespace and truncate an error message."""
    return " ".join(redact_secrets(message).split())[:limit]
