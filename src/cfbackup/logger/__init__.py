"""
cfbackup Logger Module

Usage:
    from cfbackup.logger import get_logger

    logger = get_logger("cfbackup")
    logger.info("Control plane started", port=8080)

Environment Variables:
    {PREFIX}_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
    {PREFIX}_LOG_FILE: Optional file path for log output
    {PREFIX}_LOG_JSON: Set to "true" for JSON output format
    {PREFIX}_LOG_TIMESTAMP: Set to "false" to drop timestamps from text output

    Where {PREFIX} is derived from the logger name (e.g., CFBACKUP for "cfbackup")
"""

import logging
import os
from typing import Optional

from .interface import Logger
from .structured_logger import JsonFormatter, StructuredLogger, TextFormatter


def _get_env_prefix(name: str) -> str:
    """Convert logger name to environment variable prefix.

    Examples:
        "cfbackup" -> "CFBACKUP"
        "cfbackup-worker" -> "CFBACKUP_WORKER"
    """
    return name.upper().replace("-", "_").replace(".", "_")


def create_logger(
    name: str = "cfbackup",
    level: Optional[int] = None,
    log_file: Optional[str] = None,
    json_format: Optional[bool] = None,
    include_timestamp: Optional[bool] = None,
) -> Logger:
    """Create a new logger instance.

    Parameters that are not provided are read from the environment using
    the pattern {PREFIX}_LOG_LEVEL, {PREFIX}_LOG_FILE, {PREFIX}_LOG_JSON and
    {PREFIX}_LOG_TIMESTAMP.
    """
    env_prefix = _get_env_prefix(name)

    if level is None:
        level_str = os.environ.get(f"{env_prefix}_LOG_LEVEL", "INFO").upper()
        level = getattr(logging, level_str, logging.INFO)

    if log_file is None:
        log_file = os.environ.get(f"{env_prefix}_LOG_FILE")

    if json_format is None:
        json_format = os.environ.get(f"{env_prefix}_LOG_JSON", "false").lower() == "true"

    if include_timestamp is None:
        include_timestamp = os.environ.get(f"{env_prefix}_LOG_TIMESTAMP", "true").lower() == "true"

    return StructuredLogger(
        name=name,
        level=level,
        log_file=log_file,
        json_format=json_format,
        include_timestamp=include_timestamp,
    )


def get_logger(name: str = "cfbackup") -> Logger:
    """Get a logger configured from environment variables."""
    return create_logger(name=name)


__all__ = [
    "Logger",
    "StructuredLogger",
    "JsonFormatter",
    "TextFormatter",
    "create_logger",
    "get_logger",
]
