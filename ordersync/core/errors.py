"""Failure taxonomy for the sync engine.

Retryable failures (``TransientNetworkError``, ``RateLimitError``,
``PersistenceError``) are handled by :mod:`ordersync.core.retry`; everything
else propagates to the caller on the first occurrence.
"""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for every error raised by the sync engine."""

    retryable: bool = False


class TransientNetworkError(SyncError):
    """Timeout, connection failure, or 5xx from the upstream API."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None, next_cursor: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.next_cursor = next_cursor


class RateLimitError(SyncError):
    """Upstream throttled the request; ``retry_after`` is the server-dictated wait in seconds."""

    retryable = True

    def __init__(self, message: str, retry_after: Optional[float] = None, next_cursor: Optional[str] = None):
        super().__init__(message)
        self.retry_after = retry_after
        self.next_cursor = next_cursor


class UpstreamError(SyncError):
    """Non-retryable upstream rejection (4xx other than 429)."""

    def __init__(self, message: str, status_code: Optional[int] = None, next_cursor: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.next_cursor = next_cursor


class ValidationError(SyncError):
    """A single malformed record. Skipped and logged, never fails a batch."""


class PersistenceError(SyncError):
    """Store write failure; retried at batch granularity."""

    retryable = True


class FatalConfigError(SyncError):
    """Missing connection or credentials. Aborts the run before any fetch."""


class PageFetchError(SyncError):
    """A page could not be fetched after retries were exhausted.

    ``next_cursor`` is set only when the failed response still advertised a
    following page, which lets the orchestrator skip forward.
    """

    def __init__(self, message: str, cursor: Optional[str] = None, next_cursor: Optional[str] = None):
        super().__init__(message)
        self.cursor = cursor
        self.next_cursor = next_cursor
