"""Custom exceptions for the rendering context."""

from typing import Optional


class RenderingError(Exception):
    """Base class for rendering context errors."""


class ConfigError(RenderingError, ValueError):
    """
    Exception raised when a rendering configuration value is unknown or invalid.

    Attributes:
        key: Offending configuration key (None for file-level problems)
    """

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(f"{key}: {message}" if key else message)


class WorkingAreaError(RenderingError):
    """Exception raised when a working area cannot be created, written, or removed."""


class QueueShutdownError(RenderingError):
    """
    Exception raised when the compilation worker cannot be joined during shutdown.

    The host should treat this as a leaked worker (e.g., delay process exit).
    """

    def __init__(self, message: str, timeout: float):
        self.timeout = timeout
        super().__init__(message)
