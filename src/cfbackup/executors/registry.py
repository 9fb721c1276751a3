"""Executor registry

Maps a service type tag to the factory building its executor.
"""

from typing import Callable, Dict, List, Optional

from cfbackup.config import ServiceConfig
from cfbackup.exceptions import UnsupportedError
from cfbackup.executors.base import Executor
from cfbackup.executors.mongodb import MongoDBExecutor
from cfbackup.executors.mysql import MySQLExecutor
from cfbackup.executors.postgres import PostgresExecutor
from cfbackup.executors.redis import RedisExecutor
from cfbackup.logger import Logger
from cfbackup.models import ServiceInstance, ServiceType

ExecutorFactory = Callable[[ServiceInstance, ServiceConfig, Optional[Logger]], Executor]


class ExecutorRegistry:
    """Resolves the executor for a service instance."""

    def __init__(self) -> None:
        self._factories: Dict[str, ExecutorFactory] = {}

    def register(self, service_type: str, factory: ExecutorFactory) -> None:
        self._factories[str(service_type)] = factory

    def supported_types(self) -> List[str]:
        return sorted(self._factories)

    def resolve(
        self,
        service: ServiceInstance,
        options: Optional[ServiceConfig] = None,
        logger: Optional[Logger] = None,
    ) -> Executor:
        """
        Build the executor for ``service``

        Raises:
            UnsupportedError: If no executor is registered for the type
        """
        factory = self._factories.get(service.type)
        if factory is None:
            raise UnsupportedError(
                f"no executor registered for service type {service.type}",
                details={"service_type": service.type, "supported": self.supported_types()},
            )
        return factory(service, options or ServiceConfig(), logger)


def default_registry() -> ExecutorRegistry:
    """Registry with all built-in executor variants."""
    registry = ExecutorRegistry()
    registry.register(ServiceType.POSTGRES.value, PostgresExecutor)
    registry.register(ServiceType.MYSQL.value, MySQLExecutor)
    registry.register(ServiceType.MONGODB.value, MongoDBExecutor)
    registry.register(ServiceType.REDIS.value, RedisExecutor)
    return registry
