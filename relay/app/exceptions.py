"""Custom exceptions for the proxy application."""

from datetime import datetime, timezone
from typing import Any, Dict


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ProxyError(Exception):
    """Base class for proxy errors with HTTP status code and error kind.

    All custom exceptions should inherit from this class and define
    their specific status_code and error tag for consistent HTTP
    response handling.
    """
    status_code: int = 500
    error: str = "internal_error"

    def __init__(self, message: str = "Proxy error"):
        self.message = message
        super().__init__(message)

    def to_response(self) -> Dict[str, Any]:
        """Convert to API response body."""
        return {
            "error": self.error,
            "message": self.message,
            "timestamp": utc_timestamp(),
        }

    def response_headers(self) -> Dict[str, str]:
        return {}


class AdmissionRejectedError(ProxyError):
    """A rate-limited request would exceed the per-window budget.

    Maps to HTTP 429 Too Many Requests. Counters are never mutated on
    this path.
    """
    status_code = 429
    error = "rate_limit_exceeded"

    def __init__(
        self,
        message: str,
        retry_after: int = 60,
        error: str | None = None,
    ):
        self.retry_after = retry_after
        if error:
            self.error = error
        super().__init__(message)

    def to_response(self) -> Dict[str, Any]:
        return {
            "error": self.error,
            "message": self.message,
            "retry_after": self.retry_after,
        }

    def response_headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class UpstreamUnreachableError(ProxyError):
    """Transport failure reaching the upstream (DNS, connect, timeout).

    Maps to HTTP 500. The client gets a generic message; ``detail`` is
    only written to the server log.
    """
    status_code = 500
    error = "upstream_unreachable"

    def __init__(self, detail: str = "", message: str = "Failed to reach upstream"):
        self.detail = detail
        super().__init__(message)


class MalformedRequestBodyError(ProxyError):
    """Request body could not be decoded as JSON for token estimation.

    Recovered locally: the estimate defaults to 0 and the request proceeds.
    """
    status_code = 400
    error = "malformed_request_body"


class MalformedResponseBodyError(ProxyError):
    """Upstream declared JSON but sent something else.

    Recovered locally: the original body is passed through.
    """
    status_code = 502
    error = "malformed_response_body"
