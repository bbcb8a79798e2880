"""Error kinds raised by the ingestion pipeline."""

from datetime import datetime


class IngestionError(Exception):
    """Base exception for ingestion failures."""


class ExternalServiceError(IngestionError):
    """Raised when the GitHub API fails with a network error or an HTTP error status."""

    def __init__(self, message: str, status: int | None = None, url: str | None = None):
        super().__init__(message)
        self.status = status
        self.url = url


class RateLimitError(IngestionError):
    """Raised when GitHub reports an exhausted rate limit. Never retried."""

    def __init__(self, message: str, reset_at: datetime | None = None, url: str | None = None):
        super().__init__(message)
        self.reset_at = reset_at
        self.url = url


class ValidationError(IngestionError):
    """Raised for malformed or missing input."""


class PersistenceError(IngestionError):
    """Raised when a database operation fails."""


class NotFoundError(IngestionError):
    pass


class InvalidStateError(IngestionError):
    """Raised on a job status transition the lifecycle does not allow."""


class IngestionCancelled(IngestionError):
    """Raised when the caller cancelled the ingestion while it was in flight."""
