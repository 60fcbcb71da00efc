"""Typed exception hierarchy for CLI-related errors.

All exceptions inherit from CLIError so the command boundary can catch them
together with the engine's DocSyncError family.
"""

from typing import Optional

from src.core.errors import DocSyncError


class CLIError(DocSyncError):
    """Base exception for all CLI-related errors."""
    pass


class ConfigNotFoundError(CLIError):
    """Raised when configuration file is not found."""

    def __init__(self, config_path: str):
        super().__init__(
            f"Configuration file not found at {config_path} (run 'docsync init' first)"
        )
        self.config_path = config_path


class InitError(CLIError):
    """Raised when initialization fails."""

    def __init__(self, message: str):
        super().__init__(message)


class ConfigFilesystemError(CLIError):
    """Raised when configuration file operations fail."""

    def __init__(self, file_path: str, operation: str, reason: Optional[str] = None):
        message = f"Configuration file operation '{operation}' failed for {file_path}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.file_path = file_path
        self.operation = operation
        self.reason = reason
