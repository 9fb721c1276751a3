"""Executor interface

An executor implements backup/restore mechanics for one service type. Each
variant declares a static capability set; the orchestrator consults
``supports`` before it touches any state, so an unsupported operation is
rejected without side effects.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import AsyncIterable, AsyncIterator, ClassVar, FrozenSet, Optional, Tuple

from cfbackup.config import ServiceConfig
from cfbackup.exceptions import UnsupportedError
from cfbackup.logger import Logger, get_logger
from cfbackup.models import ServiceInstance


class Operation(str, Enum):
    BACKUP = "backup"
    RESTORE = "restore"


class Executor(ABC):
    """Abstract base class for per-service-type backup strategies."""

    capabilities: ClassVar[FrozenSet[Operation]] = frozenset()

    def __init__(
        self,
        service: ServiceInstance,
        options: Optional[ServiceConfig] = None,
        logger: Optional[Logger] = None,
    ):
        self.service = service
        self.options = options or ServiceConfig()
        self.logger = logger or get_logger("cfbackup")

    @classmethod
    def supports(cls, operation: Operation) -> bool:
        return operation in cls.capabilities

    @abstractmethod
    async def backup(self) -> Tuple[AsyncIterator[bytes], str]:
        """
        Start a backup

        Returns:
            Tuple of (byte stream, file extension). Iterating the stream
            raises ExecutionError if the dump fails, including after some
            bytes were produced.
        """

    async def restore(self, chunks: AsyncIterable[bytes]) -> None:
        """
        Restore from a byte stream, consuming it completely

        Raises:
            ExecutionError: If the restore fails at any point
            UnsupportedError: If the service type cannot be restored
        """
        raise UnsupportedError(
            f"restoring {self.service.type} is not supported",
            details={"service_type": self.service.type, "service_name": self.service.name},
        )
