"""
Structured proxy errors.

Every pipeline stage that can terminate a request raises a ProxyError
subclass. The exception handler in app.main renders it as:

    {"error": {"code": <int>, "message": "<str>", "details": {...}}}

details must never contain a raw credential — use mask_credential().
"""

from __future__ import annotations

from typing import Any


class ProxyError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
        *,
        status_code: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        self.headers = headers or {}
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.status_code,
                "message": self.message,
                "details": self.details,
            }
        }


class RequestValidationFailed(ProxyError):
    """Malformed or unsafe client input."""

    status_code = 400
    default_message = "Invalid request"


class MethodNotAllowed(ProxyError):
    status_code = 405
    default_message = "HTTP method not allowed"


class RateLimitExceeded(ProxyError):
    """Caller IP exceeded its request ceiling for the current window."""

    status_code = 429
    default_message = "Rate limit exceeded"


class UpstreamUnavailable(ProxyError):
    """Transport failure or missing configuration for the upstream LLM."""

    status_code = 503
    default_message = "Upstream service is temporarily unavailable. Please try again later."


class UpstreamError(ProxyError):
    """Upstream answered with a non-2xx status; the status is passed through."""

    status_code = 502
    default_message = "Upstream API error"


class UpstreamResponseInvalid(ProxyError):
    """Upstream answered 2xx but the body could not be processed."""

    status_code = 500
    default_message = "Error processing upstream response"


def mask_credential(key: str | None) -> str:
    """Redact a credential for echoing: ``***`` + last 4 characters."""
    if not key:
        return "none"
    if len(key) <= 4:
        return "***"
    return "***" + key[-4:]
