"""Backup housekeeping and retention management

Deletes obsolete artifacts of a service according to its retention policy.

An artifact is kept when it is among the ``files`` most recent artifacts
**or** younger than ``days`` days; it is deleted only when it fails both
tests. A bound <= 0 is disabled, so a policy with both bounds disabled
never deletes anything.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Collection, List, Optional, Tuple

from cfbackup.config import RetentionPolicy
from cfbackup.exceptions import BackupError
from cfbackup.logger import Logger, get_logger
from cfbackup.models import BackupArtifact, ServiceInstance
from cfbackup.storage import Catalog


@dataclass
class RetentionResult:
    """Outcome of one retention pass"""

    kept: List[BackupArtifact] = field(default_factory=list)
    deleted: List[BackupArtifact] = field(default_factory=list)
    failed: List[BackupArtifact] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "kept": len(self.kept),
            "deleted": len(self.deleted),
            "failed": len(self.failed),
        }


def partition(
    artifacts: List[BackupArtifact],
    policy: RetentionPolicy,
    now: Optional[datetime] = None,
    protected: Collection[str] = (),
) -> Tuple[List[BackupArtifact], List[BackupArtifact]]:
    """Split artifacts into (keep, delete) according to ``policy``.

    Args:
        artifacts: Catalog listing of one service
        policy: Retention bounds
        now: Reference time for ages (defaults to the current UTC time)
        protected: Keys that are always kept (uploads in progress)

    Returns:
        Tuple of (keep, delete), each most recent first
    """
    if policy.max_files <= 0 and policy.max_age_days <= 0:
        return list(artifacts), []

    now = now or datetime.now(timezone.utc)
    ordered = sorted(artifacts, key=lambda a: (a.last_modified, a.key), reverse=True)
    max_age = timedelta(days=policy.max_age_days)

    keep, delete = [], []
    for index, artifact in enumerate(ordered):
        within_count = policy.max_files > 0 and index < policy.max_files
        within_age = policy.max_age_days > 0 and now - artifact.last_modified <= max_age
        if within_count or within_age or artifact.key in protected:
            keep.append(artifact)
        else:
            delete.append(artifact)

    return keep, delete


class RetentionEnforcer:
    """Applies retention policies to a service's artifacts in the catalog"""

    def __init__(self, catalog: Catalog, logger: Optional[Logger] = None):
        self.catalog = catalog
        self.logger = logger or get_logger("cfbackup")

    async def enforce(
        self,
        service: ServiceInstance,
        policy: RetentionPolicy,
        protected: Collection[str] = (),
        now: Optional[datetime] = None,
    ) -> RetentionResult:
        """Delete every artifact of ``service`` outside the policy.

        Deletion is best-effort: a failure for one artifact is logged and
        the remaining deletions still run.

        Raises:
            StorageError: If the artifacts cannot be listed
        """
        log = self.logger.bind(service_type=service.type, service_name=service.name)
        artifacts = await self.catalog.list(service.prefix)
        keep, delete = partition(artifacts, policy, now=now, protected=protected)
        result = RetentionResult(kept=keep)

        for artifact in delete:
            try:
                await self.catalog.delete(artifact.key)
                result.deleted.append(artifact)
                log.info(
                    "Removed old backup",
                    filename=artifact.filename,
                    last_modified=artifact.last_modified.isoformat(),
                )
            except BackupError as e:
                result.failed.append(artifact)
                log.error("Failed to remove backup", filename=artifact.filename, error=str(e))

        log.info(
            "Retention complete",
            retention_days=policy.max_age_days,
            retention_files=policy.max_files,
            **result.to_dict(),
        )
        return result
