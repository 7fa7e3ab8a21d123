"""Error types for kemono-dl.

Every failure raised by the client derives from :class:`KemonoError` so the
CLI can tell expected failures (network, HTTP, disk) from programming errors.
"""
from __future__ import annotations

from typing import Optional


class KemonoError(RuntimeError):
    """Base class for all expected kemono-dl failures."""


class ProfileURLError(KemonoError, ValueError):
    """Raised when a profile URL does not match /{service}/user/{id}."""


class TransportError(KemonoError):
    """Raised on connection, DNS or timeout failures. Never retried by the fetcher."""


class DownloadTimeoutError(TransportError):
    """Raised when a single download attempt exceeds its wall-clock budget."""


class HttpStatusError(KemonoError):
    """Raised for a non-2xx response. Carries the status code and response body."""

    def __init__(self, status_code: int, body: str = "", url: Optional[str] = None) -> None:
        self.status_code = int(status_code)
        self.body = body or ""
        self.url = url
        super().__init__(f"API returned status {self.status_code}: {self.body[:500]}")


class RateLimitedError(HttpStatusError):
    """A single HTTP 429 response; retryable."""

    def __init__(self, body: str = "", url: Optional[str] = None) -> None:
        super().__init__(429, body, url)


class RateLimitExhaustedError(KemonoError):
    """Raised once every attempt of a request was answered with HTTP 429."""

    def __init__(self, url: str, attempts: int) -> None:
        self.url = url
        self.attempts = int(attempts)
        super().__init__(f"rate limited after {self.attempts} attempts: {url}")


class DecodeError(KemonoError):
    """Raised when a response body is not the JSON shape we expected."""


class PaginationError(KemonoError):
    """Raised when a page could not be fetched within the outer retry budget."""


class StorageError(KemonoError):
    """Raised when reading or writing local state fails."""
