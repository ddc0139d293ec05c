"""Exceptions shared across ar-sync."""

from typing import Any


class ArSyncError(Exception):
    """Base exception for ar-sync errors."""


class ConfigurationError(ArSyncError):
    """A run was requested with an invalid configuration or selection."""


class InvalidTransitionError(ArSyncError):
    """An operation is not allowed in the controller's current state."""

    def __init__(self, operation: str, state: str):
        super().__init__(f"Cannot {operation} while {state}")
        self.operation = operation
        self.state = state


class SupabaseAPIError(ArSyncError):
    """Base exception for Supabase API errors."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class AuthenticationError(SupabaseAPIError):
    """Authentication failed."""

    pass


class RateLimitError(SupabaseAPIError):
    """Rate limit exceeded."""

    pass
