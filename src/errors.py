from typing import Any, Optional


class ReplayError(Exception):
    """Base class for live visit replay errors."""


class ConfigurationError(ReplayError, ValueError):
    """Invalid or missing option, raised before any replay starts."""


class SourceUnavailableError(ReplayError, FileNotFoundError):
    """Log file is missing or cannot be read."""


NotFoundError = SourceUnavailableError


class SendFailure(ReplayError):
    """A single tracking request failed or timed out."""

    def __init__(self, message: str, record: Optional[Any] = None):
        super().__init__(message)
        self.record = record


class ReplayStateError(ReplayError, RuntimeError):
    """Operation is not valid in the scheduler's current state."""
