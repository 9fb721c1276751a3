"""Base exception classes for cfbackup.

All cfbackup exceptions include structured error information:
- code: Machine-readable error identifier
- message: Human-readable error description
- details: Additional context for debugging/recovery

The class of an exception decides how callers react to it: a BusyError
means "retry later", an UnsupportedError means "never retry", everything
else is a failure of the operation itself.
"""

from typing import Any, Dict, Optional


class BackupError(Exception):
    """Base exception for all cfbackup errors.

    Attributes:
        code: Machine-readable error code (e.g., "SERVICE_BUSY")
        message: Human-readable error message
        details: Optional additional context for debugging/recovery
    """

    default_code = "BACKUP_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize error with structured information.

        Args:
            message: Human-readable error message
            code: Machine-readable error code (defaults to the class code)
            details: Optional additional context
        """
        self.code = code or self.default_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return formatted error string."""
        if self.details:
            return f"{self.code}: {self.message} (details: {self.details})"
        return f"{self.code}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(BackupError):
    """Malformed identifiers or request data."""

    default_code = "INVALID_REQUEST"


class NotFoundError(BackupError):
    """Unknown service instance or backup artifact."""

    default_code = "NOT_FOUND"


class BusyError(BackupError):
    """An operation is already queued or running for the service."""

    default_code = "SERVICE_BUSY"


class UnsupportedError(BackupError):
    """The operation is not implemented (or disabled) for the service type."""

    default_code = "UNSUPPORTED_OPERATION"


class ExecutionError(BackupError):
    """The underlying dump/restore mechanism failed."""

    default_code = "EXECUTION_FAILED"


class JobTimeoutError(ExecutionError):
    """A job exceeded its configured timeout and was cancelled."""

    default_code = "JOB_TIMEOUT"


class JobCancelledError(ExecutionError):
    """A job was cancelled before it could finish (e.g. on shutdown)."""

    default_code = "JOB_CANCELLED"


class StorageError(BackupError):
    """The object-storage backend failed."""

    default_code = "STORAGE_ERROR"


class ConfigurationError(BackupError):
    """System configuration is invalid or incomplete."""

    default_code = "CONFIGURATION_ERROR"
