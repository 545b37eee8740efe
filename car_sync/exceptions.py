"""Custom exceptions for car_sync."""

from __future__ import annotations

from datetime import datetime


class CarSyncError(Exception):
    """Base exception for all car_sync errors."""

    pass


class ConfigurationError(CarSyncError):
    """Raised when configuration is invalid or missing."""

    pass


class CollectionError(CarSyncError):
    """Raised when fetching a page from the upstream API fails."""

    def __init__(self, message: str, *, url: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class TransientUpstreamError(CollectionError):
    """Upstream failure that is worth retrying with backoff."""

    pass


class RateLimitedError(TransientUpstreamError):
    """Raised when the upstream API answers HTTP 429."""

    pass


class UpstreamServerError(TransientUpstreamError):
    """Raised when the upstream API answers with a 5xx status."""

    pass


class NetworkTransientError(TransientUpstreamError):
    """Raised for connection resets, DNS failures, timeouts and aborted requests."""

    pass


class PermanentClientError(CollectionError):
    """Raised for 4xx responses other than 429. Never retried."""

    pass


class MalformedPayloadError(CollectionError):
    """Raised when the upstream body cannot be decoded as JSON."""

    pass


class TransformationError(CarSyncError):
    """Raised when a raw listing cannot be transformed."""

    pass


class ListingRejectedError(TransformationError):
    """Raised when a listing lacks a required field and must be dropped."""

    def __init__(self, reason: str, *, listing_id: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.listing_id = listing_id


class DatastoreError(CarSyncError):
    """Raised when a datastore request (RPC, count, delete) fails."""

    pass


class StagingWriteError(DatastoreError):
    """Raised when a staging chunk upsert fails."""

    def __init__(self, message: str, *, row_count: int = 0) -> None:
        super().__init__(message)
        self.row_count = row_count


class CheckpointError(CarSyncError):
    """Raised when a checkpoint cannot be persisted."""

    pass


class CircuitBreakerOpenError(CarSyncError):
    """Raised when the circuit breaker rejects a call after repeated failures."""

    def __init__(self, name: str, reopen_at: datetime | None = None) -> None:
        message = (
            f"Circuit breaker '{name}' is OPEN - too many consecutive failures. "
            "Calls are temporarily rejected."
        )
        if reopen_at is not None:
            message = f"{message} Retry after {reopen_at.isoformat()}"
        super().__init__(message)
        self.name = name
        self.reopen_at = reopen_at


class SyncAbortedError(CarSyncError):
    """Raised when accumulated page errors cross the abort ceiling."""

    def __init__(self, message: str, *, last_page: int, error_count: int) -> None:
        super().__init__(message)
        self.last_page = last_page
        self.error_count = error_count


def classify_error(exc: BaseException) -> str:
    """Map an exception onto the sync error taxonomy label used in reports."""

    if isinstance(exc, CircuitBreakerOpenError):
        return "breaker_open"
    if isinstance(exc, TransientUpstreamError):
        return "transient_upstream"
    if isinstance(exc, (PermanentClientError, MalformedPayloadError, TransformationError)):
        return "permanent_upstream"
    if isinstance(exc, DatastoreError):
        return "write_failure"
    if isinstance(exc, (ConfigurationError, SyncAbortedError)):
        return "fatal"
    return "unexpected"
