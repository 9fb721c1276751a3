"""Domain records shared by the catalog, executors, state tracker and API."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from cfbackup.config import ServiceBinding
from cfbackup.exceptions import ValidationError

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


class ServiceType(str, Enum):
    """Service types with a registered executor variant."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    MONGODB = "mongodb"
    REDIS = "redis"

    @classmethod
    def parse(cls, value: str) -> "ServiceType":
        try:
            return cls(value.lower())
        except ValueError:
            raise ValidationError(
                f"unsupported service type: {value}",
                details={"service_type": value, "supported": [t.value for t in cls]},
            ) from None


def validate_identifier(value: str, what: str) -> str:
    """Reject identifiers that could escape a service's key prefix."""
    if (
        not value
        or "/" in value
        or "\\" in value
        or value in (".", "..")
        or ".." in value
        or _CONTROL_CHARS.search(value)
    ):
        raise ValidationError(f"invalid {what}: {value!r}", details={what: value})
    return value


@dataclass(frozen=True)
class ServiceKey:
    """Identity of a service instance."""

    type: str
    name: str

    def __str__(self) -> str:
        return f"{self.type}/{self.name}"


@dataclass(frozen=True)
class ServiceInstance:
    """A bound service instance and its connection credentials."""

    type: str
    name: str
    binding: ServiceBinding = field(default_factory=ServiceBinding, repr=False)

    @property
    def key(self) -> ServiceKey:
        return ServiceKey(self.type, self.name)

    @property
    def prefix(self) -> str:
        """Catalog key prefix holding this service's artifacts."""
        return f"{self.type}/{self.name}/"

    def artifact_key(self, filename: str) -> str:
        validate_identifier(filename, "filename")
        return f"{self.prefix}{filename}"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"Name": self.name, "Type": self.type}
        if self.binding.provider:
            data["Provider"] = self.binding.provider
        if self.binding.plan:
            data["Plan"] = self.binding.plan
        return data


@dataclass(frozen=True)
class BackupArtifact:
    """One persisted backup file with its storage metadata."""

    key: str
    filename: str
    size: int
    last_modified: datetime

    @property
    def filepath(self) -> str:
        """Directory part of the key (the service prefix)."""
        return self.key.rsplit("/", 1)[0] if "/" in self.key else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Key": self.key,
            "Filepath": self.filepath,
            "Filename": self.filename,
            "Size": self.size,
            "LastModified": self.last_modified.isoformat(),
        }


@dataclass(frozen=True)
class BackupRecord:
    """A service paired with its artifacts, most recent first."""

    service: ServiceInstance
    files: Tuple[BackupArtifact, ...] = ()

    def find(self, filename: str) -> Optional[BackupArtifact]:
        for artifact in self.files:
            if artifact.filename == filename:
                return artifact
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Service": self.service.to_dict(),
            "Files": [f.to_dict() for f in self.files],
        }
