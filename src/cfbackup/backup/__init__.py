"""Backup orchestration for cfbackup

Components:
    - BackupOrchestrator: single-flight backup/restore jobs per service
    - RetentionEnforcer: deletes artifacts outside the retention policy
    - BackupScheduler: cron-driven backups
    - ServiceDirectory: lookup of bound service instances
"""

from .directory import ServiceDirectory
from .housekeeping import RetentionEnforcer, RetentionResult, partition
from .scheduler import BackupScheduler, parse_schedule
from .service import BackupOrchestrator, JobEvent, JobListener

__all__ = [
    "BackupOrchestrator",
    "BackupScheduler",
    "JobEvent",
    "JobListener",
    "RetentionEnforcer",
    "RetentionResult",
    "ServiceDirectory",
    "parse_schedule",
    "partition",
]
