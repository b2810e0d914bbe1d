"""
Error types shared by services and routers.

Services raise these; routers map them to HTTP responses through
``error_to_response`` so the status-code rules live in one place.
"""
from __future__ import annotations

from fastapi.responses import JSONResponse

STATUS_BAD_REQUEST = 400
STATUS_UNAUTHORIZED = 401
STATUS_INTERNAL_ERROR = 500
STATUS_BAD_GATEWAY = 502


class RainwatchError(Exception):
    """Base class; ``code`` is the machine-readable string returned to callers."""

    code = "error"

    def __init__(self, message: str | None = None, code: str | None = None):
        if code:
            self.code = code
        self.message = message or self.code
        super().__init__(self.message)


class ConfigurationError(RainwatchError):
    """Missing credential, missing store, nothing to dispatch to. Never retried."""

    code = "configuration_error"


class AuthorizationError(RainwatchError):
    code = "unauthorized"


class InvalidPayloadError(RainwatchError):
    code = "invalid_payload"


class OverrideParseError(RainwatchError):
    """The stored config override document is not usable."""

    code = "invalid_override"


class StoreWriteError(RainwatchError):
    """The key-value store did not acknowledge a write."""

    code = "kv_write_failed"


class RetriesExhausted(RainwatchError):
    """Every allowed attempt hit a retryable failure (429 or transport error)."""

    code = "retries_exhausted"

    def __init__(self, attempts: int, last_error: Exception | None = None, last_status: int | None = None):
        self.attempts = attempts
        self.last_error = last_error
        self.last_status = last_status
        detail = f"status {last_status}" if last_status is not None else str(last_error)
        super().__init__(f"gave up after {attempts} attempts ({detail})")


# (exception type, status code). First match wins.
ERROR_STATUS_RULES: list[tuple[type[RainwatchError], int]] = [
    (AuthorizationError, STATUS_UNAUTHORIZED),
    (ConfigurationError, STATUS_BAD_REQUEST),
    (InvalidPayloadError, STATUS_BAD_REQUEST),
    (StoreWriteError, STATUS_BAD_GATEWAY),
]


def error_to_response(exc: RainwatchError) -> JSONResponse:
    """Map a service error to ``{"ok": false, "error": ...}`` with the matching status."""
    for exc_type, status_code in ERROR_STATUS_RULES:
        if isinstance(exc, exc_type):
            return JSONResponse(status_code=status_code, content={"ok": False, "error": exc.message})
    return JSONResponse(status_code=STATUS_INTERNAL_ERROR, content={"ok": False, "error": exc.message})
