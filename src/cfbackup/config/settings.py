"""Typed configuration for the backup control plane.

Configuration is layered, highest precedence last:

1. model defaults
2. JSON config file (``config.json`` by default)
3. JSON document in ``CFBACKUP_CONFIG`` (from .env or the environment)
4. individual variables (``CFBACKUP_USERNAME``, ``CFBACKUP_PASSWORD``,
   ``CFBACKUP_ENCRYPTION_KEY``, ``CFBACKUP_PORT``, ``CFBACKUP_LOG_LEVEL``)

``resolve_config`` is pure and returns a frozen ``AppConfig`` snapshot that is
handed to components at construction time.
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from cfbackup.config.env_loader import ENV_PREFIX, EnvLoader
from cfbackup.exceptions import ConfigurationError

DEFAULT_CONFIG_FILE = "config.json"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(h|m|s)")
_DURATION_UNITS = {"h": 3600, "m": 60, "s": 1}


def parse_duration(value: Union[int, float, str]) -> float:
    """Parse ``3600``, ``"3600"``, ``"1h"``, ``"1h30m"`` or ``"90s"`` into seconds."""
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip().lower()
    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class RetentionPolicy(_Frozen):
    """Per-service retention bounds. A value <= 0 disables that bound."""

    days: int = Field(default=31, description="Keep artifacts younger than this many days")
    files: int = Field(default=100, description="Keep this many most recent artifacts")

    @property
    def max_age_days(self) -> int:
        return self.days

    @property
    def max_files(self) -> int:
        return self.files


class ServiceBinding(_Frozen):
    """Connection credentials of a bound service instance."""

    type: str = Field(default="", description="Service type tag (postgres, mysql, mongodb, redis)")
    provider: str = ""
    plan: str = ""
    host: str = ""
    port: int = 0
    uri: str = Field(default="", repr=False)
    username: str = ""
    password: str = Field(default="", repr=False)
    database: str = ""


class ServiceConfig(_Frozen):
    """Per-service backup options."""

    schedule: str = Field(default="", description="Cron schedule, 5 or 6 fields (seconds first)")
    timeout: float = Field(default=3600.0, description="Job timeout in seconds", gt=0)
    retention: RetentionPolicy = Field(default_factory=RetentionPolicy)
    force_import: bool = Field(default=False, description="Continue restore on SQL errors")
    log_stderr: bool = Field(default=False, description="Log tool stderr output")
    ignore_tables: List[str] = Field(default_factory=list)
    backup_options: List[str] = Field(default_factory=list)
    restore_options: List[str] = Field(default_factory=list)
    binding: ServiceBinding = Field(default_factory=ServiceBinding)

    @field_validator("timeout", mode="before")
    @classmethod
    def validate_timeout(cls, v: Any) -> float:
        if v is None or v == "" or v == 0:
            return 3600.0
        return parse_duration(v)

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: str) -> str:
        if v and len(v.split()) not in (5, 6):
            raise ValueError("Schedule must be a 5-field or 6-field cron expression")
        return v


class S3Settings(_Frozen):
    """Object storage settings."""

    bucket_name: str = ""
    host: str = Field(default="", description="Endpoint host or URL; empty for AWS")
    region: str = ""
    access_key: str = Field(default="", repr=False)
    secret_key: str = Field(default="", repr=False)
    disable_ssl: bool = False
    skip_ssl_verification: bool = False
    encryption_key: str = Field(default="", repr=False)

    @property
    def endpoint_url(self) -> Optional[str]:
        if not self.host:
            return None
        if "://" in self.host:
            return self.host
        scheme = "http" if self.disable_ssl else "https"
        return f"{scheme}://{self.host}"


class AppConfig(_Frozen):
    """Complete, resolved application configuration."""

    port: int = 8080
    log_level: str = "info"
    logging_timestamp: bool = False
    username: str = ""
    password: str = Field(default="", repr=False)
    disable_web: bool = False
    disable_restore: bool = False
    disable_metrics: bool = Field(default=False, description="Do not serve /metrics")
    unprotected_metrics: bool = Field(default=False, description="Serve /metrics without basic auth")
    backup_dir: Path = Field(default=Path("./backups"), description="FileCatalog root when no bucket is set")
    max_concurrent_jobs: int = Field(default=4, ge=1, description="Concurrent jobs per service type")
    s3: S3Settings = Field(default_factory=S3Settings)
    services: Dict[str, ServiceConfig] = Field(default_factory=dict)

    def service(self, name: str) -> ServiceConfig:
        """Options for ``name``; defaults when the service is not configured."""
        return self.services.get(name) or ServiceConfig()


def merge_config(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``overlay`` into ``base``; overlay values win."""
    merged: Dict[str, Any] = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = value
    return merged


def _env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if env.get(f"{ENV_PREFIX}USERNAME"):
        overrides["username"] = env[f"{ENV_PREFIX}USERNAME"]
    if env.get(f"{ENV_PREFIX}PASSWORD"):
        overrides["password"] = env[f"{ENV_PREFIX}PASSWORD"]
    if env.get(f"{ENV_PREFIX}ENCRYPTION_KEY"):
        overrides["s3"] = {"encryption_key": env[f"{ENV_PREFIX}ENCRYPTION_KEY"]}
    if env.get(f"{ENV_PREFIX}PORT"):
        overrides["port"] = env[f"{ENV_PREFIX}PORT"]
    if env.get(f"{ENV_PREFIX}LOG_LEVEL"):
        overrides["log_level"] = env[f"{ENV_PREFIX}LOG_LEVEL"]
    return overrides


def resolve_config(
    file_data: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Resolve the layered configuration into an immutable snapshot.

    Args:
        file_data: Parsed JSON config file contents
        env: Prefixed environment variables (see EnvLoader)

    Raises:
        ConfigurationError: If the overlay is not valid JSON or validation fails
    """
    env = env or {}
    data: Dict[str, Any] = {}

    if file_data:
        data = merge_config(data, file_data)

    env_json = env.get(f"{ENV_PREFIX}CONFIG")
    if env_json:
        try:
            env_data = json.loads(env_json)
        except ValueError as e:
            raise ConfigurationError(
                f"could not parse environment variable {ENV_PREFIX}CONFIG: {e}"
            ) from e
        if not isinstance(env_data, Mapping):
            raise ConfigurationError(f"{ENV_PREFIX}CONFIG must contain a JSON object")
        data = merge_config(data, env_data)

    data = merge_config(data, _env_overrides(env))

    try:
        return AppConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError("invalid configuration", details={"errors": e.errors()}) from e


def load_config(
    config_file: Optional[Path | str] = None,
    env_file: Optional[Path | str] = None,
    overrides: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Read the config file and environment, then resolve them."""
    path = Path(config_file or DEFAULT_CONFIG_FILE)
    file_data: Optional[Dict[str, Any]] = None

    if path.is_file():
        try:
            file_data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"could not load '{path}': {e}") from e
    elif config_file is not None:
        raise ConfigurationError(f"config file '{path}' does not exist")

    env = EnvLoader(env_file).load(overrides)
    return resolve_config(file_data, env)
