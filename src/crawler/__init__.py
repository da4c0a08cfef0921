"""Crawler primitives: reader clients, discovery and pagination.

The exception hierarchy below is shared by every network-facing component.
Each error carries the HTTP status that produced it (when there was one), the
provider name, and whether the resilience layer may retry it.
"""

from __future__ import annotations


class ReaderError(Exception):
    """Base class for failures talking to a reader provider or a website."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        provider: str | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.provider = provider
        if retryable is not None:
            self.retryable = retryable


class ConfigurationError(ReaderError):
    """Raised when credentials or required settings are missing. Fatal."""

    retryable = False


class RateLimited(ReaderError):
    """Exception raised when a provider or domain answers 429."""

    def __init__(self, message: str, *, retry_after: float | None = None, **kwargs):
        kwargs.setdefault("status_code", 429)
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ServiceUnavailable(ReaderError):
    """Exception raised on 503 responses."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("status_code", 503)
        super().__init__(message, **kwargs)


class CircuitOpenError(ServiceUnavailable):
    """Raised without any network I/O while a provider's breaker is open."""


class ContentUnavailable(ReaderError):
    """Raised on 422 or when a provider returns an empty body."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("status_code", 422)
        super().__init__(message, **kwargs)


class NotFoundError(ReaderError):
    """Exception raised when a URL returns 404/410 (permanent missing)."""

    retryable = False


class NetworkError(ReaderError):
    """Connection-level failure (DNS, reset, TLS)."""


class ReaderTimeout(NetworkError):
    """The request exceeded its explicit timeout."""


class CreditLimitExceeded(ReaderError):
    """The provider's credit budget for this process is spent."""

    retryable = False

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("status_code", 429)
        super().__init__(message, **kwargs)
