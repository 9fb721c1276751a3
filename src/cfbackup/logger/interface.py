"""
Logger interface for cfbackup.

Every component receives a Logger instead of reaching for a module-level
``logging.getLogger``, so job context (service type, service name, job kind)
can be bound once and carried through executor, catalog and retention logs.
"""

from abc import ABC, abstractmethod
from typing import Any


class Logger(ABC):
    """Abstract base class for the logging interface."""

    @abstractmethod
    def debug(self, message: str, **kwargs: Any) -> None:
        """Log a debug message."""

    @abstractmethod
    def info(self, message: str, **kwargs: Any) -> None:
        """Log an info message."""

    @abstractmethod
    def warning(self, message: str, **kwargs: Any) -> None:
        """Log a warning message."""

    @abstractmethod
    def error(self, message: str, **kwargs: Any) -> None:
        """Log an error message.

        Pass ``exc_info=True`` to attach the active exception's traceback.
        """

    @abstractmethod
    def bind(self, **fields: Any) -> "Logger":
        """Return a logger that adds ``fields`` to every record.

        Args:
            **fields: Key-value pairs attached to all messages of the child

        Returns:
            A new Logger sharing handlers and session with this one
        """

    @abstractmethod
    def get_session_id(self) -> str:
        """Get the current session ID."""
