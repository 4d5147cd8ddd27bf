"""Exceptions raised by the MELCloud Home client and engine."""

from __future__ import annotations


class MelCloudApiError(Exception):
    """Base exception for MELCloud Home API errors."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class MelCloudAuthError(MelCloudApiError):
    """Exception raised for authentication errors."""


class MelCloudNoRefreshTokenError(MelCloudAuthError):
    """Raised when no refresh token is available; re-authentication needed."""

    def __init__(self) -> None:
        super().__init__("No refresh token available")


class MelCloudRefreshFailedError(MelCloudAuthError):
    """Raised when exchanging the refresh token fails."""

    def __init__(self, status: int | None, body: str) -> None:
        super().__init__(f"Token refresh failed: HTTP {status}", status)
        self.body = body

    @property
    def is_transient(self) -> bool:
        """Return True if the refresh failed for network or server reasons."""
        return self.status is None or self.status == 429 or self.status >= 500


class MelCloudTransientError(MelCloudApiError):
    """Raised when a transient failure persists after all retries."""


class MelCloudValidationError(MelCloudApiError):
    """Raised for malformed, incomplete or oversized responses."""


class MelCloudCommunicationError(Exception):
    """Raised when a command could not be delivered to a unit."""
