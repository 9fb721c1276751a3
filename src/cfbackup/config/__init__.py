"""Configuration Module for cfbackup

Example:
    from cfbackup.config import load_config

    config = load_config("config.json")
    policy = config.service("orders-db").retention
"""

from cfbackup.config.env_loader import ENV_PREFIX, EnvLoader
from cfbackup.config.settings import (
    AppConfig,
    RetentionPolicy,
    S3Settings,
    ServiceBinding,
    ServiceConfig,
    load_config,
    merge_config,
    parse_duration,
    resolve_config,
)

__all__ = [
    "AppConfig",
    "RetentionPolicy",
    "S3Settings",
    "ServiceBinding",
    "ServiceConfig",
    "EnvLoader",
    "ENV_PREFIX",
    "load_config",
    "merge_config",
    "parse_duration",
    "resolve_config",
]
