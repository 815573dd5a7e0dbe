"""Error taxonomy shared by the provider modules."""

from __future__ import annotations


class ProviderError(RuntimeError):
    """Base error for PostgreSQL provider failures."""


class ConfigurationError(ProviderError, ValueError):
    """Raised when provider options are missing or malformed."""


class ArgumentError(ProviderError, ValueError):
    """Raised when a call site passes invalid input."""


class ProviderStateError(ProviderError):
    """Raised when an operation is invoked in the wrong lifecycle state."""


class MaintenanceError(ProviderError):
    """Raised when a maintenance command fails against the backend."""


class PurgeError(ProviderError):
    """Raised when truncating tables fails against the backend."""


class MigrationError(ProviderError):
    """Raised when applied migration history disagrees with the known migrations."""


class UnsupportedOperationError(ProviderError, NotImplementedError):
    """Raised for operations this provider deliberately does not implement."""


__all__ = [
    "ArgumentError",
    "ConfigurationError",
    "MaintenanceError",
    "MigrationError",
    "ProviderError",
    "ProviderStateError",
    "PurgeError",
    "UnsupportedOperationError",
]
