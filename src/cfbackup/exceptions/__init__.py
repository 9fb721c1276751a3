"""Common exceptions for cfbackup.

Usage:
    from cfbackup.exceptions import BusyError, NotFoundError

    try:
        await orchestrator.create_backup(service)
    except BusyError:
        ...  # retry later
"""

from cfbackup.exceptions.base import (
    BackupError,
    BusyError,
    ConfigurationError,
    ExecutionError,
    JobCancelledError,
    JobTimeoutError,
    NotFoundError,
    StorageError,
    UnsupportedError,
    ValidationError,
)

__all__ = [
    "BackupError",
    "ValidationError",
    "NotFoundError",
    "BusyError",
    "UnsupportedError",
    "ExecutionError",
    "JobTimeoutError",
    "JobCancelledError",
    "StorageError",
    "ConfigurationError",
]
