"""
Error taxonomy for the price feed.

Upstream failures are classified here so the failover controller can decide
between cool-down, backoff and host advance without inspecting messages.
"""

from __future__ import annotations

from typing import Any


class PriceFeedError(Exception):
    """Base class for price feed errors."""

    error_code: str = "PRICEFEED_ERROR"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class QuoteSourceError(PriceFeedError):
    """Upstream quote request failed (network error or non-2xx status)."""

    error_code = "QUOTE_SOURCE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        host: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details=details)
        self.host = host
        self.status_code = status_code
        self.details["host"] = host
        self.details["status_code"] = status_code


class RateLimitedError(QuoteSourceError):
    """Upstream answered 429 or 418."""

    error_code = "RATE_LIMITED"

    def __init__(self, message: str, *, retry_after: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.details["retry_after"] = retry_after


class GeoBlockedError(QuoteSourceError):
    """Upstream refused the request for legal reasons (451)."""

    error_code = "GEO_BLOCKED"


class MalformedPayloadError(QuoteSourceError):
    """Upstream answered 2xx with a body that is not a ticker list."""

    error_code = "MALFORMED_PAYLOAD"
