"""Service directory

Static lookup of bound service instances, built from the configured
bindings. It stands in for platform binding discovery.
"""

from typing import Dict, Iterable, List, Optional

from cfbackup.config import AppConfig
from cfbackup.exceptions import NotFoundError
from cfbackup.logger import Logger, get_logger
from cfbackup.models import ServiceInstance, ServiceKey


class ServiceDirectory:
    """Known service instances indexed by (type, name)."""

    def __init__(self, services: Iterable[ServiceInstance] = ()):
        self._services: Dict[ServiceKey, ServiceInstance] = {}
        for service in services:
            self._services[service.key] = service

    @classmethod
    def from_config(cls, config: AppConfig, logger: Optional[Logger] = None) -> "ServiceDirectory":
        logger = logger or get_logger("cfbackup")
        services = []
        for name, options in config.services.items():
            if not options.binding.type:
                logger.warning("Service has no binding type, skipping", service_name=name)
                continue
            services.append(
                ServiceInstance(type=options.binding.type.lower(), name=name, binding=options.binding)
            )
        return cls(services)

    def get(self, service_type: str, service_name: str) -> ServiceInstance:
        """
        Raises:
            NotFoundError: If no such service is bound
        """
        service = self._services.get(ServiceKey(service_type, service_name))
        if service is None:
            raise NotFoundError(
                f"could not find service [{service_name}] of type [{service_type}]",
                details={"service_type": service_type, "service_name": service_name},
            )
        return service

    def find(
        self,
        service_type: Optional[str] = None,
        service_name: Optional[str] = None,
    ) -> List[ServiceInstance]:
        """Services matching the given filters, ordered by type and name."""
        matches = [
            s
            for s in self._services.values()
            if (not service_type or s.type == service_type)
            and (not service_name or s.name == service_name)
        ]
        return sorted(matches, key=lambda s: (s.type, s.name))

    def __len__(self) -> int:
        return len(self._services)
