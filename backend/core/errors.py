"""
StoreLens error taxonomy.

Every user-facing failure is a StoreLensError carrying an HTTP status and a
message that is safe to show outside local environments. The API layer
translates these into JSON responses; background jobs log and fold them.
"""

from datetime import datetime


class StoreLensError(Exception):
    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.public_message
        super().__init__(self.message)


class ValidationError(StoreLensError):
    """Malformed input, rejected before any side effect."""

    status_code = 400
    public_message = "Invalid request"


class AuthenticationError(StoreLensError):
    status_code = 401
    public_message = "Invalid site ID"


class NotFoundError(StoreLensError):
    status_code = 404
    public_message = "Not found"


class AuthorizationError(NotFoundError):
    """Caller does not own the resource. Reported exactly like a missing record."""


class InvalidTransitionError(StoreLensError):
    status_code = 409
    public_message = "Invalid status transition"


class RateLimitError(StoreLensError):
    status_code = 429
    public_message = "Rate limit exceeded"

    def __init__(self, limit: int, remaining: int, reset: datetime, message: str | None = None):
        super().__init__(message)
        self.limit = limit
        self.remaining = remaining
        self.reset = reset

    @property
    def headers(self) -> dict[str, str]:
        return rate_limit_headers(self.limit, self.remaining, self.reset)


class TransientStoreError(StoreLensError):
    """Durable write or read failed; safe to retry."""

    status_code = 503
    public_message = "Storage temporarily unavailable"


class InsufficientDataError(StoreLensError):
    """Not enough samples for a statistically meaningful answer.

    Nothing raises this yet. Detection returns an empty list and benchmarking
    returns a report with ``sufficient_data=False`` instead.
    """

    status_code = 422
    public_message = "Insufficient data"


def rate_limit_headers(limit: int, remaining: int, reset: datetime) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": reset.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
    }
