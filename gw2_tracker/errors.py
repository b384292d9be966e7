"""Exception taxonomy for gw2-progress-tracker.

Transport errors are raised by the API client and bubble to the calling
service. Storage errors wrap sqlite3 failures raised by the database layer.
"""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for all tracker errors."""


# ══════════════════════════════════════════════════════════
#  Upstream API
# ══════════════════════════════════════════════════════════

class ApiError(TrackerError):
    """Upstream answered with an error status."""

    def __init__(self, path: str, status: int, body: str = "", message: str | None = None) -> None:
        self.path = path
        self.status = status
        self.body = body
        super().__init__(message or f"GW2 API error {status} for {path}: {body[:200]}")


class InvalidCredentialError(ApiError):
    """401/403: the API key is invalid or lacks a permission. Never retried."""

    def __init__(self, path: str, status: int, body: str = "") -> None:
        super().__init__(path, status, body, f"Invalid or unauthorized API key ({status}) for {path}")


class NotFoundError(ApiError):
    """404: the resource does not exist. Never retried."""

    def __init__(self, path: str, body: str = "") -> None:
        super().__init__(path, 404, body, f"Resource not found: {path}")


class RateLimitedError(ApiError):
    """429: upstream rejected the request for exceeding its quota."""

    def __init__(self, path: str, body: str = "") -> None:
        super().__init__(path, 429, body, f"Rate limited by GW2 API for {path}")


class NetworkFailure(TrackerError):
    """No response was received (connection error or timeout)."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Network failure for {path}: {reason}")


class ValidationFailure(TrackerError):
    """Upstream returned a payload that does not match the expected shape."""


# ══════════════════════════════════════════════════════════
#  Local storage & users
# ══════════════════════════════════════════════════════════

class StorageFailure(TrackerError):
    """A durable-store read or write failed."""


class UserLimitError(TrackerError):
    """Adding another user would exceed the configured maximum."""


class DuplicateCredentialError(TrackerError):
    """Another user already holds this API key."""


class UnknownUserError(TrackerError):
    """No user exists with the given id."""
