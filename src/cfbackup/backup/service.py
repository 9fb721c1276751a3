"""Backup job orchestrator

Accepts backup and restore requests, reserves the service in the state
store, drives the executor on a background task, persists artifacts
through the catalog and applies retention after every successful backup.

Every accepted request runs as its own ``asyncio.Task``. Errors inside a
job are recorded in the state store and never escape the task, so one
failing service cannot affect any other.
"""

import asyncio
import inspect
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set, Union

from cfbackup.backup.directory import ServiceDirectory
from cfbackup.backup.housekeeping import RetentionEnforcer
from cfbackup.config import AppConfig, ServiceConfig
from cfbackup.exceptions import (
    BackupError,
    ExecutionError,
    JobCancelledError,
    JobTimeoutError,
    UnsupportedError,
    ValidationError,
)
from cfbackup.executors import Executor, ExecutorRegistry, Operation, default_registry
from cfbackup.logger import Logger, get_logger
from cfbackup.models import BackupRecord, ServiceInstance, ServiceKey, validate_identifier
from cfbackup.state import OperationHandle, OperationKind, OperationState, Phase, StateStore
from cfbackup.storage import Catalog

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


@dataclass(frozen=True)
class JobEvent:
    """Notification emitted on job start and completion."""

    name: str  # e.g. "backup-started", "restore-failed"
    service: ServiceInstance
    state: OperationState


JobListener = Callable[[JobEvent], Union[None, Awaitable[None]]]


class BackupOrchestrator:
    """Main backup/restore orchestrator"""

    def __init__(
        self,
        config: AppConfig,
        catalog: Catalog,
        state: Optional[StateStore] = None,
        directory: Optional[ServiceDirectory] = None,
        registry: Optional[ExecutorRegistry] = None,
        logger: Optional[Logger] = None,
    ):
        self.config = config
        self.catalog = catalog
        self.logger = logger or get_logger("cfbackup")
        self.state = state or StateStore()
        self.directory = directory or ServiceDirectory.from_config(config, self.logger)
        self.registry = registry or default_registry()
        self.retention = RetentionEnforcer(catalog, self.logger)

        self._slots: Dict[str, asyncio.Semaphore] = {}
        self._tasks: Dict[ServiceKey, "asyncio.Task[OperationState]"] = {}
        self._writing: Set[str] = set()
        self._listeners: List[JobListener] = []

    # -- lookup ---------------------------------------------------------

    def service(self, service_type: str, service_name: str) -> ServiceInstance:
        """
        Resolve a bound service

        Raises:
            ValidationError: If the identifiers are malformed or the type is unknown
            NotFoundError: If the service is not bound
        """
        validate_identifier(service_type, "service_type")
        validate_identifier(service_name, "service_name")
        if service_type not in self.registry.supported_types():
            raise ValidationError(
                f"unsupported service type: {service_type}",
                details={"service_type": service_type, "supported": self.registry.supported_types()},
            )
        return self.directory.get(service_type, service_name)

    def services(self, service_type: Optional[str] = None) -> List[ServiceInstance]:
        return self.directory.find(service_type=service_type)

    def options(self, service: ServiceInstance) -> ServiceConfig:
        return self.config.service(service.name)

    def add_listener(self, listener: JobListener) -> None:
        """Register a callable (sync or async) receiving every JobEvent."""
        self._listeners.append(listener)

    def get_state(self, service: ServiceInstance) -> OperationState:
        return self.state.query(service.key)

    def states(self) -> List[OperationState]:
        return self.state.snapshot()

    # -- jobs -----------------------------------------------------------

    async def create_backup(self, service: ServiceInstance) -> "asyncio.Task[OperationState]":
        """
        Start a backup of ``service`` in the background

        Returns:
            Task resolving to the terminal OperationState

        Raises:
            ValidationError: If the service identifiers are malformed
            UnsupportedError: If no executor handles the service type
            BusyError: If an operation is already queued or running
        """
        self._validate(service)
        executor = self._executor(service, Operation.BACKUP)
        handle = self.state.reserve(service.key, OperationKind.BACKUP)
        self.logger.info("Backup accepted", service_type=service.type, service_name=service.name)
        return self._launch(handle, service, self._run_backup(handle, service, executor))

    async def restore_backup(self, service: ServiceInstance, filename: str) -> "asyncio.Task[OperationState]":
        """
        Start a restore of ``service`` from ``filename`` in the background

        Unsupported restores are rejected before any state transition.

        Raises:
            ValidationError: If identifiers are malformed
            UnsupportedError: If restores are disabled or not supported for the type
            NotFoundError: If the artifact does not exist
            BusyError: If an operation is already queued or running
        """
        self._validate(service)
        key = service.artifact_key(filename)
        if self.config.disable_restore:
            raise UnsupportedError(
                "restores are disabled",
                details={"service_type": service.type, "service_name": service.name},
            )
        executor = self._executor(service, Operation.RESTORE)
        await self.catalog.stat(key)

        handle = self.state.reserve(service.key, OperationKind.RESTORE)
        self.logger.info(
            "Restore accepted",
            service_type=service.type,
            service_name=service.name,
            filename=filename,
        )
        return self._launch(handle, service, self._run_restore(handle, service, executor, key, filename))

    async def drain(self) -> None:
        """Wait for all in-flight jobs to finish."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all in-flight jobs; each is marked failed as cancelled."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- direct catalog operations ----------------------------------------

    async def list_backups(self, service: ServiceInstance) -> BackupRecord:
        """Artifacts of ``service``, most recent first; empty if there are none."""
        self._validate(service)
        artifacts = await self.catalog.list(service.prefix)
        return BackupRecord(service=service, files=tuple(artifacts))

    async def list_all_backups(
        self,
        service_type: Optional[str] = None,
        service_name: Optional[str] = None,
    ) -> List[BackupRecord]:
        """
        Backup records of all services matching the filters

        Raises:
            NotFoundError: If both filters are given and name an unknown service
        """
        if service_type and service_name:
            validate_identifier(service_type, "service_type")
            validate_identifier(service_name, "service_name")
            services = [self.directory.get(service_type, service_name)]
        else:
            services = self.directory.find(service_type=service_type, service_name=service_name)
        return [await self.list_backups(service) for service in services]

    async def get_backup(self, service: ServiceInstance, filename: str) -> BackupRecord:
        """
        Backup record of ``service`` restricted to one artifact

        Raises:
            NotFoundError: If the artifact does not exist
        """
        self._validate(service)
        artifact = await self.catalog.stat(service.artifact_key(filename))
        return BackupRecord(service=service, files=(artifact,))

    async def read_backup(self, service: ServiceInstance, filename: str) -> AsyncIterator[bytes]:
        """
        Open an artifact for download (decrypted)

        Raises:
            NotFoundError: If the artifact does not exist
        """
        self._validate(service)
        return await self.catalog.get(service.artifact_key(filename))

    async def delete_backup(self, service: ServiceInstance, filename: str) -> None:
        """
        Delete an artifact; no reservation is needed

        Raises:
            NotFoundError: If the artifact does not exist
        """
        self._validate(service)
        await self.catalog.delete(service.artifact_key(filename))
        self.logger.info(
            "Backup deleted",
            service_type=service.type,
            service_name=service.name,
            filename=filename,
        )

    # -- internals ------------------------------------------------------

    def _validate(self, service: ServiceInstance) -> None:
        validate_identifier(service.type, "service_type")
        validate_identifier(service.name, "service_name")

    def _executor(self, service: ServiceInstance, operation: Operation) -> Executor:
        executor = self.registry.resolve(service, self.options(service), self.logger)
        if not executor.supports(operation):
            raise UnsupportedError(
                f"{operation.value} is not supported for service type {service.type}",
                details={
                    "service_type": service.type,
                    "service_name": service.name,
                    "operation": operation.value,
                },
            )
        return executor

    def _slot(self, service_type: str) -> asyncio.Semaphore:
        if service_type not in self._slots:
            self._slots[service_type] = asyncio.Semaphore(self.config.max_concurrent_jobs)
        return self._slots[service_type]

    def _launch(self, handle: OperationHandle, service: ServiceInstance, coro) -> "asyncio.Task[OperationState]":
        task = asyncio.get_running_loop().create_task(coro, name=f"{handle.kind.value}:{service.key}")
        self._tasks[service.key] = task

        def _forget(done: "asyncio.Task[OperationState]") -> None:
            if self._tasks.get(service.key) is done:
                del self._tasks[service.key]
            # cancelled before its first step: _execute never ran
            if done.cancelled() and self.state.query(service.key).phase is Phase.QUEUED:
                self.state.mark_failed(
                    handle, JobCancelledError(f"{handle.kind.value} of {service.key} was cancelled")
                )

        task.add_done_callback(_forget)
        return task

    async def _emit(self, suffix: str, service: ServiceInstance, state: OperationState) -> None:
        event = JobEvent(name=f"{state.kind.value}-{suffix}", service=service, state=state)
        for listener in self._listeners:
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error("Job listener failed", job_event=event.name, error=str(e), exc_info=True)

    async def _execute(
        self,
        handle: OperationHandle,
        service: ServiceInstance,
        work: Callable[[Logger], Awaitable[Optional[str]]],
    ) -> OperationState:
        """Run ``work`` in a worker slot under the service timeout and record the outcome."""
        kind = handle.kind.value
        timeout = self.options(service).timeout
        log = self.logger.bind(service_type=service.type, service_name=service.name, operation=kind)

        try:
            async with self._slot(service.type):
                running = self.state.mark_running(handle)
                log.info(f"{kind.capitalize()} started")
                await self._emit("started", service, running)
                filename = await asyncio.wait_for(work(log), timeout=timeout)
        except asyncio.CancelledError:
            error: BackupError = JobCancelledError(f"{kind} of {service.key} was cancelled")
            failed = self.state.mark_failed(handle, error)
            log.warning(f"{kind.capitalize()} cancelled")
            await self._emit("failed", service, failed)
            raise
        except asyncio.TimeoutError:
            error = JobTimeoutError(
                f"{kind} of {service.key} did not finish within {timeout:g}s",
                details={"timeout": timeout},
            )
        except BackupError as e:
            error = e
        except Exception as e:
            log.error(f"{kind.capitalize()} crashed", error=str(e), exc_info=True)
            error = ExecutionError(str(e) or type(e).__name__)
        else:
            succeeded = self.state.mark_succeeded(handle, filename)
            log.info(f"{kind.capitalize()} succeeded", filename=filename)
            await self._emit("succeeded", service, succeeded)
            return succeeded

        failed = self.state.mark_failed(handle, error)
        log.error(f"{kind.capitalize()} failed", error=str(error), error_code=error.code)
        await self._emit("failed", service, failed)
        return failed

    async def _unique_filename(self, service: ServiceInstance, extension: str) -> str:
        """``{name}_{timestamp}.{ext}``, suffixed with ``-N`` if that key is taken."""
        stem = f"{service.name}_{datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)}"
        filename = f"{stem}.{extension}"
        suffix = 0
        while service.artifact_key(filename) in self._writing or await self.catalog.exists(
            service.artifact_key(filename)
        ):
            suffix += 1
            filename = f"{stem}-{suffix}.{extension}"
        return filename

    async def _run_backup(
        self,
        handle: OperationHandle,
        service: ServiceInstance,
        executor: Executor,
    ) -> OperationState:
        async def work(log: Logger) -> str:
            stream, extension = await executor.backup()
            filename = await self._unique_filename(service, extension)
            key = service.artifact_key(filename)

            self._writing.add(key)
            try:
                async with aclosing(stream):
                    artifact = await self.catalog.put(key, stream)
            finally:
                self._writing.discard(key)

            log.info("Backup uploaded", filename=filename, size=artifact.size)
            return filename

        state = await self._execute(handle, service, work)

        if state.phase is Phase.SUCCEEDED:
            try:
                await self.retention.enforce(
                    service,
                    self.options(service).retention,
                    protected=frozenset(self._writing),
                )
            except BackupError as e:
                self.logger.error(
                    "Retention failed",
                    service_type=service.type,
                    service_name=service.name,
                    error=str(e),
                )
        return state

    async def _run_restore(
        self,
        handle: OperationHandle,
        service: ServiceInstance,
        executor: Executor,
        key: str,
        filename: str,
    ) -> OperationState:
        async def work(log: Logger) -> str:
            stream = await self.catalog.get(key)
            async with aclosing(stream):
                await executor.restore(stream)
            log.info("Restore applied", filename=filename)
            return filename

        return await self._execute(handle, service, work)
