"""
Structured logger with JSON output and file support.

Text output is meant for operators tailing the control plane, JSON output
for log aggregation. Both carry the bound job fields as key=value extras.
"""

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .interface import Logger

# Attributes set by logging.LogRecord itself; anything else on a record is an extra.
_RECORD_KEYS = frozenset(
    {
        "args", "asctime", "created", "exc_info", "exc_text", "filename",
        "funcName", "levelname", "levelno", "lineno", "module",
        "msecs", "message", "msg", "name", "pathname", "process",
        "processName", "relativeCreated", "stack_info", "thread",
        "threadName", "taskName",
    }
)


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_KEYS and key != "session_id"
    }


class JsonFormatter(logging.Formatter):
    """Formats log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        session_id = getattr(record, "session_id", None)
        if session_id:
            log_data["session_id"] = str(session_id)

        log_data.update(_extra_fields(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Text formatter that appends extra kwargs to the message."""

    def format(self, record: logging.LogRecord) -> str:
        s = super().format(record)

        extra_args = _extra_fields(record)
        if extra_args:
            # Keep the traceback (if any) on the lines below the extras
            head, sep, tail = s.partition("\n")
            head += " " + " ".join(f"{k}={v}" for k, v in extra_args.items())
            s = head + sep + tail

        return s


class StructuredLogger(Logger):
    """Logger implementation with structured JSON logging and file output.

    Example:
        logger = StructuredLogger(name="cfbackup", json_format=True)
        job_logger = logger.bind(service_type="postgres", service_name="orders-db")
        job_logger.info("Backup started")
    """

    def __init__(
        self,
        name: str = "cfbackup",
        level: int = logging.INFO,
        log_file: Optional[str] = None,
        json_format: bool = False,
        include_timestamp: bool = True,
        _fields: Optional[Dict[str, Any]] = None,
        _parent: Optional["StructuredLogger"] = None,
    ):
        """Initialize the structured logger.

        Args:
            name: Logger name
            level: Logging level (logging.DEBUG, logging.INFO, etc.)
            log_file: Optional file path for log output
            json_format: If True, output logs as JSON; otherwise use text format
            include_timestamp: Prefix text output with a timestamp
        """
        self._name = name
        self._fields = dict(_fields or {})

        if _parent is not None:
            # Child loggers share the parent's stdlib logger and session
            self._session_id = _parent._session_id
            self._logger = _parent._logger
            return

        self._session_id = str(uuid.uuid4())[:8]
        self._logger = logging.getLogger(name)
        self._logger.setLevel(level)

        # Clear existing handlers to avoid duplication if re-initialized
        if self._logger.hasHandlers():
            self._logger.handlers.clear()

        self._logger.propagate = False

        if json_format:
            formatter: logging.Formatter = JsonFormatter()
        else:
            fmt = "[%(levelname)s] [%(name)s] [session:%(session_id)s] %(message)s"
            if include_timestamp:
                fmt = "%(asctime)s " + fmt
            formatter = TextFormatter(fmt)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        self._logger.addHandler(console_handler)

        if log_file:
            try:
                file_handler = logging.FileHandler(log_file)
                file_handler.setFormatter(formatter)
                self._logger.addHandler(file_handler)
            except OSError as e:
                # Fallback to console if file cannot be opened
                print(f"Failed to setup log file {log_file}: {e}", file=sys.stderr)

    def get_session_id(self) -> str:
        """Get the current session ID."""
        return self._session_id

    def bind(self, **fields: Any) -> "StructuredLogger":
        merged = {**self._fields, **fields}
        return StructuredLogger(name=self._name, _fields=merged, _parent=self)

    def _log(self, level: int, message: str, **kwargs: Any) -> None:
        exc_info = kwargs.pop("exc_info", None)
        extra: Dict[str, Any] = {"session_id": self._session_id}

        for k, v in {**self._fields, **kwargs}.items():
            if k in _RECORD_KEYS:
                # Prefix reserved keys to preserve them but avoid collision
                extra[f"_{k}"] = v
            else:
                extra[k] = v

        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, **kwargs)
