"""cfbackup - Backup and restore control plane for bound services.

This package provides:
- backup: job orchestration, retention and scheduled backups
- executors: per-service-type dump/restore strategies
- storage: artifact catalog over S3 or the local filesystem, with encryption
- state: in-memory operation state and single-flight enforcement
- config: layered typed configuration
- logger: structured logging with session tracking and JSON support
- exceptions: exception classes with structured error info
- web: Starlette REST API
"""

__version__ = "1.0.0"

# Re-export commonly used items for convenience
from cfbackup.logger import (
    Logger,
    StructuredLogger,
    create_logger,
    get_logger,
)

from cfbackup.config import (
    AppConfig,
    RetentionPolicy,
    ServiceConfig,
    load_config,
    resolve_config,
)

from cfbackup.exceptions import (
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

from cfbackup.models import (
    BackupArtifact,
    BackupRecord,
    ServiceInstance,
    ServiceKey,
    ServiceType,
)

from cfbackup.state import (
    OperationKind,
    OperationState,
    Phase,
    StateStore,
)

from cfbackup.storage import (
    Catalog,
    FileCatalog,
    S3Catalog,
    create_catalog,
)

from cfbackup.executors import (
    Executor,
    ExecutorRegistry,
    default_registry,
)

from cfbackup.backup import (
    BackupOrchestrator,
    BackupScheduler,
    RetentionEnforcer,
    ServiceDirectory,
)

__all__ = [
    "__version__",
    # Logger
    "Logger",
    "StructuredLogger",
    "create_logger",
    "get_logger",
    # Config
    "AppConfig",
    "RetentionPolicy",
    "ServiceConfig",
    "load_config",
    "resolve_config",
    # Exceptions
    "BackupError",
    "BusyError",
    "ConfigurationError",
    "ExecutionError",
    "JobCancelledError",
    "JobTimeoutError",
    "NotFoundError",
    "StorageError",
    "UnsupportedError",
    "ValidationError",
    # Models
    "BackupArtifact",
    "BackupRecord",
    "ServiceInstance",
    "ServiceKey",
    "ServiceType",
    # State
    "OperationKind",
    "OperationState",
    "Phase",
    "StateStore",
    # Storage
    "Catalog",
    "FileCatalog",
    "S3Catalog",
    "create_catalog",
    # Executors
    "Executor",
    "ExecutorRegistry",
    "default_registry",
    # Backup
    "BackupOrchestrator",
    "BackupScheduler",
    "RetentionEnforcer",
    "ServiceDirectory",
]
