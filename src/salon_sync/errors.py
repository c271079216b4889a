"""salon_sync.errors

Exception hierarchy shared by the fetch, parse, and sync layers.
"""

from __future__ import annotations


class SalonSyncError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(SalonSyncError):
    """Raised when required configuration (DSN, storage) is missing or invalid."""


class TransportError(SalonSyncError):
    """Raised when an outbound HTTP GET fails or returns a non-2xx status."""

    def __init__(self, url: str, message: str, status: int | None = None) -> None:
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status = status


class SelectorMapValidationError(ValueError):
    """Raised when a selector map (built-in or YAML) fails schema validation."""


class ReconcileError(SalonSyncError):
    """Raised when a name lookup against the casts table fails."""
