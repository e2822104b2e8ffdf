"""Exception types raised by ppa_analytics and its collaborators."""

from typing import Optional


class AnalyticsError(Exception):
    """Base class for all analytics errors."""


class ConfigUnavailableError(AnalyticsError):
    """Raised when the app configuration cannot be retrieved."""


class AuthenticationError(AnalyticsError):
    """Raised when an authentication token cannot be acquired."""


class TransportError(AnalyticsError):
    """Raised when the backend rejects or never receives a submission."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EncodingError(AnalyticsError):
    """Raised when a record cannot be encoded for hashing or transmission."""


class MissingPreconditionError(AnalyticsError):
    """Raised when an operation needs context that the store does not hold."""


class StoreBindingError(AnalyticsError):
    """Raised when the collector is wired to an object that is not a store.

    This is an integration error and surfaces at construction time.
    """
