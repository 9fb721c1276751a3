"""Tests for the backup job orchestrator."""

import asyncio
import os
import re
from typing import List, Optional

import pytest

from cfbackup.backup import BackupOrchestrator, JobEvent
from cfbackup.config import AppConfig, RetentionPolicy, ServiceBinding, ServiceConfig
from cfbackup.exceptions import (
    BusyError,
    ExecutionError,
    NotFoundError,
    UnsupportedError,
    ValidationError,
)
from cfbackup.executors import Executor, ExecutorRegistry, Operation, RedisExecutor
from cfbackup.models import ServiceInstance
from cfbackup.state import Phase
from cfbackup.storage import FileCatalog

FILENAME = re.compile(r"^orders-db_\d{14}(-\d+)?\.gz$")


async def _stream(*chunks: bytes):
    for chunk in chunks:
        yield chunk


async def _collect(stream) -> bytes:
    data = b""
    async for chunk in stream:
        data += chunk
    return data


class FakeExecutor(Executor):
    """In-memory executor with controllable behaviour."""

    capabilities = frozenset({Operation.BACKUP, Operation.RESTORE})

    def __init__(
        self,
        service,
        options=None,
        logger=None,
        payload: bytes = b"dump",
        fail: Optional[BaseException] = None,
        delay: float = 0,
        gate: Optional[asyncio.Event] = None,
        restored: Optional[List[bytes]] = None,
    ):
        super().__init__(service, options, logger)
        self.payload = payload
        self.fail = fail
        self.delay = delay
        self.gate = gate
        self.restored = restored if restored is not None else []

    async def backup(self):
        async def produce():
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            yield self.payload
            if self.fail is not None:
                raise self.fail

        return produce(), "gz"

    async def restore(self, chunks):
        data = await _collect(chunks)
        if self.fail is not None:
            raise self.fail
        self.restored.append(data)


def _make(tmp_path, max_concurrent_jobs: int = 4, disable_restore: bool = False, **behaviour):
    """Orchestrator over a file catalog with postgres services backed by FakeExecutor."""

    def service_config(**kwargs) -> ServiceConfig:
        return ServiceConfig(binding=ServiceBinding(type="postgres"), **kwargs)

    config = AppConfig(
        backup_dir=tmp_path,
        max_concurrent_jobs=max_concurrent_jobs,
        disable_restore=disable_restore,
        services={
            "orders-db": service_config(
                timeout=behaviour.pop("timeout", 3600),
                retention=behaviour.pop("retention", RetentionPolicy()),
            ),
            "users-db": service_config(),
            "cache": ServiceConfig(binding=ServiceBinding(type="redis")),
        },
    )
    catalog = FileCatalog(tmp_path)
    per_service = behaviour.pop("per_service", {})

    registry = ExecutorRegistry()
    registry.register(
        "postgres",
        lambda service, options, logger: FakeExecutor(
            service, options, logger, **{**behaviour, **per_service.get(service.name, {})}
        ),
    )
    registry.register("redis", RedisExecutor)
    return BackupOrchestrator(config, catalog, registry=registry)


async def _settle():
    for _ in range(10):
        await asyncio.sleep(0)


class TestLookup:
    def test_service(self, tmp_path):
        orchestrator = _make(tmp_path)

        service = orchestrator.service("postgres", "orders-db")

        assert service == ServiceInstance(type="postgres", name="orders-db", binding=service.binding)

    def test_unknown_type(self, tmp_path):
        with pytest.raises(ValidationError):
            _make(tmp_path).service("oracle", "orders-db")

    def test_unknown_service(self, tmp_path):
        with pytest.raises(NotFoundError):
            _make(tmp_path).service("postgres", "missing-db")

    def test_malformed_name(self, tmp_path):
        with pytest.raises(ValidationError):
            _make(tmp_path).service("postgres", "../etc")

    def test_services_filter(self, tmp_path):
        orchestrator = _make(tmp_path)

        assert [s.name for s in orchestrator.services()] == ["orders-db", "users-db", "cache"]
        assert [s.name for s in orchestrator.services("postgres")] == ["orders-db", "users-db"]


class TestCreateBackup:
    """Tests for backup jobs."""

    @pytest.mark.asyncio
    async def test_success(self, tmp_path):
        orchestrator = _make(tmp_path, payload=b"pg_dump output")
        service = orchestrator.service("postgres", "orders-db")

        task = await orchestrator.create_backup(service)
        state = await task

        assert state.phase is Phase.SUCCEEDED
        assert FILENAME.match(state.filename)
        assert orchestrator.get_state(service) == state
        record = await orchestrator.list_backups(service)
        assert [a.filename for a in record.files] == [state.filename]
        assert await _collect(await orchestrator.read_backup(service, state.filename)) == b"pg_dump output"

    @pytest.mark.asyncio
    async def test_state_queued_on_accept(self, tmp_path):
        gate = asyncio.Event()
        orchestrator = _make(tmp_path, gate=gate)
        service = orchestrator.service("postgres", "orders-db")

        task = await orchestrator.create_backup(service)

        assert orchestrator.get_state(service).phase is Phase.QUEUED
        await _settle()
        assert orchestrator.get_state(service).phase is Phase.RUNNING
        gate.set()
        await task

    @pytest.mark.asyncio
    async def test_busy(self, tmp_path):
        gate = asyncio.Event()
        orchestrator = _make(tmp_path, gate=gate)
        service = orchestrator.service("postgres", "orders-db")
        existing = "orders-db_20250101000000.gz"
        await orchestrator.catalog.put(service.artifact_key(existing), _stream(b"old"))

        task = await orchestrator.create_backup(service)
        with pytest.raises(BusyError):
            await orchestrator.create_backup(service)
        with pytest.raises(BusyError):
            await orchestrator.restore_backup(service, existing)

        gate.set()
        assert (await task).phase is Phase.SUCCEEDED

    @pytest.mark.asyncio
    async def test_other_services_not_blocked(self, tmp_path):
        gate = asyncio.Event()
        orchestrator = _make(tmp_path, per_service={"orders-db": {"gate": gate}})

        blocked = await orchestrator.create_backup(orchestrator.service("postgres", "orders-db"))
        other = await orchestrator.create_backup(orchestrator.service("postgres", "users-db"))

        assert (await other).phase is Phase.SUCCEEDED
        assert not blocked.done()
        gate.set()
        await blocked

    @pytest.mark.asyncio
    async def test_execution_failure(self, tmp_path):
        orchestrator = _make(tmp_path, fail=ExecutionError("pg_dump exited with status 1"))
        service = orchestrator.service("postgres", "orders-db")

        state = await (await orchestrator.create_backup(service))

        assert state.phase is Phase.FAILED
        assert state.error_code == "EXECUTION_FAILED"
        assert state.last_error == "pg_dump exited with status 1"
        assert (await orchestrator.list_backups(service)).files == ()

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_recorded(self, tmp_path):
        orchestrator = _make(tmp_path, fail=RuntimeError("boom"))
        service = orchestrator.service("postgres", "orders-db")

        state = await (await orchestrator.create_backup(service))

        assert state.phase is Phase.FAILED
        assert state.error_code == "EXECUTION_FAILED"
        assert "boom" in state.last_error

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path):
        orchestrator = _make(tmp_path, delay=5, timeout=0.05)
        service = orchestrator.service("postgres", "orders-db")

        state = await (await orchestrator.create_backup(service))

        assert state.phase is Phase.FAILED
        assert state.error_code == "JOB_TIMEOUT"
        assert (await orchestrator.list_backups(service)).files == ()

    @pytest.mark.asyncio
    async def test_new_backup_after_failure(self, tmp_path):
        orchestrator = _make(tmp_path, fail=ExecutionError("boom"))
        service = orchestrator.service("postgres", "orders-db")
        await (await orchestrator.create_backup(service))

        task = await orchestrator.create_backup(service)

        assert (await task).phase is Phase.FAILED

    @pytest.mark.asyncio
    async def test_same_timestamp_keeps_both_artifacts(self, tmp_path, monkeypatch):
        """A second backup in the same timestamp slot never replaces the first."""
        monkeypatch.setattr("cfbackup.backup.service.TIMESTAMP_FORMAT", "%Y%m%d")
        first = _make(tmp_path, payload=b"first-dump")
        second = _make(tmp_path, payload=b"second-dump")
        service = first.service("postgres", "orders-db")

        first_state = await (await first.create_backup(service))
        second_state = await (await second.create_backup(service))

        assert first_state.phase is Phase.SUCCEEDED
        assert second_state.phase is Phase.SUCCEEDED
        assert second_state.filename == first_state.filename.replace(".gz", "-1.gz")
        record = await second.list_backups(service)
        assert sorted(a.filename for a in record.files) == sorted([first_state.filename, second_state.filename])
        assert await _collect(await second.read_backup(service, first_state.filename)) == b"first-dump"
        assert await _collect(await second.read_backup(service, second_state.filename)) == b"second-dump"

    @pytest.mark.asyncio
    async def test_malformed_service_rejected_before_state_change(self, tmp_path):
        orchestrator = _make(tmp_path)

        with pytest.raises(ValidationError):
            await orchestrator.create_backup(ServiceInstance(type="postgres", name="a/b"))

        assert orchestrator.states() == []


class TestRetentionAfterBackup:
    async def _seed(self, orchestrator, tmp_path, service):
        for filename in ("orders-db_20200101000000.gz", "orders-db_20200102000000.gz"):
            await orchestrator.catalog.put(service.artifact_key(filename), _stream(b"old"))
            path = tmp_path / "postgres" / "orders-db" / filename
            os.utime(path, (1_577_836_800, 1_577_836_800))

    @pytest.mark.asyncio
    async def test_applied_after_success(self, tmp_path):
        orchestrator = _make(tmp_path, retention=RetentionPolicy(days=1, files=1))
        service = orchestrator.service("postgres", "orders-db")
        await self._seed(orchestrator, tmp_path, service)

        state = await (await orchestrator.create_backup(service))

        record = await orchestrator.list_backups(service)
        assert [a.filename for a in record.files] == [state.filename]

    @pytest.mark.asyncio
    async def test_skipped_after_failure(self, tmp_path):
        orchestrator = _make(tmp_path, retention=RetentionPolicy(days=1, files=1), fail=ExecutionError("boom"))
        service = orchestrator.service("postgres", "orders-db")
        await self._seed(orchestrator, tmp_path, service)

        await (await orchestrator.create_backup(service))

        assert len((await orchestrator.list_backups(service)).files) == 2


class TestRestoreBackup:
    """Tests for restore jobs."""

    async def _artifact(self, orchestrator, service, data=b"dump") -> str:
        filename = "orders-db_20250101000000.gz"
        await orchestrator.catalog.put(service.artifact_key(filename), _stream(data))
        return filename

    @pytest.mark.asyncio
    async def test_success(self, tmp_path):
        restored: List[bytes] = []
        orchestrator = _make(tmp_path, restored=restored)
        service = orchestrator.service("postgres", "orders-db")
        filename = await self._artifact(orchestrator, service, b"the dump")

        state = await (await orchestrator.restore_backup(service, filename))

        assert state.phase is Phase.SUCCEEDED
        assert state.filename == filename
        assert restored == [b"the dump"]

    @pytest.mark.asyncio
    async def test_failure(self, tmp_path):
        orchestrator = _make(tmp_path, fail=ExecutionError("psql failed"))
        service = orchestrator.service("postgres", "orders-db")
        filename = await self._artifact(orchestrator, service)

        state = await (await orchestrator.restore_backup(service, filename))

        assert state.phase is Phase.FAILED
        assert state.error_code == "EXECUTION_FAILED"

    @pytest.mark.asyncio
    async def test_unsupported_leaves_state_untouched(self, tmp_path):
        orchestrator = _make(tmp_path)
        service = orchestrator.service("redis", "cache")

        with pytest.raises(UnsupportedError):
            await orchestrator.restore_backup(service, "cache_20250101000000.rdb")

        assert orchestrator.get_state(service).phase is Phase.IDLE
        assert orchestrator.states() == []

    @pytest.mark.asyncio
    async def test_disabled(self, tmp_path):
        orchestrator = _make(tmp_path, disable_restore=True)
        service = orchestrator.service("postgres", "orders-db")
        filename = await self._artifact(orchestrator, service)

        with pytest.raises(UnsupportedError):
            await orchestrator.restore_backup(service, filename)

        assert orchestrator.get_state(service).phase is Phase.IDLE

    @pytest.mark.asyncio
    async def test_missing_artifact(self, tmp_path):
        orchestrator = _make(tmp_path)
        service = orchestrator.service("postgres", "orders-db")

        with pytest.raises(NotFoundError):
            await orchestrator.restore_backup(service, "missing.gz")

        assert orchestrator.get_state(service).phase is Phase.IDLE

    @pytest.mark.asyncio
    async def test_malformed_filename(self, tmp_path):
        orchestrator = _make(tmp_path)
        service = orchestrator.service("postgres", "orders-db")

        with pytest.raises(ValidationError):
            await orchestrator.restore_backup(service, "../../etc/passwd")


class TestCatalogOperations:
    @pytest.mark.asyncio
    async def test_empty_listing(self, tmp_path):
        orchestrator = _make(tmp_path)
        service = orchestrator.service("postgres", "orders-db")

        record = await orchestrator.list_backups(service)

        assert record.service == service
        assert record.files == ()

    @pytest.mark.asyncio
    async def test_list_all_backups(self, tmp_path):
        orchestrator = _make(tmp_path)
        service = orchestrator.service("postgres", "orders-db")
        await (await orchestrator.create_backup(service))

        records = await orchestrator.list_all_backups()
        postgres = await orchestrator.list_all_backups(service_type="postgres")
        single = await orchestrator.list_all_backups("postgres", "orders-db")

        assert [r.service.name for r in records] == ["orders-db", "users-db", "cache"]
        assert len(records[0].files) == 1
        assert [r.service.name for r in postgres] == ["orders-db", "users-db"]
        assert [r.service.name for r in single] == ["orders-db"]

    @pytest.mark.asyncio
    async def test_list_all_backups_unknown_service(self, tmp_path):
        with pytest.raises(NotFoundError):
            await _make(tmp_path).list_all_backups("postgres", "missing-db")

    @pytest.mark.asyncio
    async def test_list_all_backups_unknown_type_is_not_found(self, tmp_path):
        with pytest.raises(NotFoundError):
            await _make(tmp_path).list_all_backups("oracle", "orders-db")

    @pytest.mark.asyncio
    async def test_get_backup(self, tmp_path):
        orchestrator = _make(tmp_path)
        service = orchestrator.service("postgres", "orders-db")
        state = await (await orchestrator.create_backup(service))

        record = await orchestrator.get_backup(service, state.filename)

        assert [a.filename for a in record.files] == [state.filename]
        with pytest.raises(NotFoundError):
            await orchestrator.get_backup(service, "missing.gz")

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path):
        orchestrator = _make(tmp_path)
        service = orchestrator.service("postgres", "orders-db")
        state = await (await orchestrator.create_backup(service))

        await orchestrator.delete_backup(service, state.filename)

        assert (await orchestrator.list_backups(service)).files == ()

    @pytest.mark.asyncio
    async def test_delete_missing(self, tmp_path):
        orchestrator = _make(tmp_path)

        with pytest.raises(NotFoundError):
            await orchestrator.delete_backup(orchestrator.service("postgres", "orders-db"), "missing.gz")


class TestJobLifecycle:
    @pytest.mark.asyncio
    async def test_events(self, tmp_path):
        orchestrator = _make(tmp_path)
        events: List[JobEvent] = []
        orchestrator.add_listener(events.append)
        service = orchestrator.service("postgres", "orders-db")

        await (await orchestrator.create_backup(service))

        assert [e.name for e in events] == ["backup-started", "backup-succeeded"]
        assert events[1].state.phase is Phase.SUCCEEDED
        assert events[1].service == service

    @pytest.mark.asyncio
    async def test_async_listener_and_failure_event(self, tmp_path):
        orchestrator = _make(tmp_path, fail=ExecutionError("boom"))
        names: List[str] = []

        async def listener(event: JobEvent) -> None:
            names.append(event.name)

        orchestrator.add_listener(listener)

        await (await orchestrator.create_backup(orchestrator.service("postgres", "orders-db")))

        assert names == ["backup-started", "backup-failed"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_fail_job(self, tmp_path):
        orchestrator = _make(tmp_path)

        def listener(event: JobEvent) -> None:
            raise RuntimeError("webhook down")

        orchestrator.add_listener(listener)

        state = await (await orchestrator.create_backup(orchestrator.service("postgres", "orders-db")))

        assert state.phase is Phase.SUCCEEDED

    @pytest.mark.asyncio
    async def test_concurrency_limit_per_type(self, tmp_path):
        gate = asyncio.Event()
        orchestrator = _make(tmp_path, max_concurrent_jobs=1, per_service={"orders-db": {"gate": gate}})
        first = orchestrator.service("postgres", "orders-db")
        second = orchestrator.service("postgres", "users-db")

        first_task = await orchestrator.create_backup(first)
        await _settle()
        second_task = await orchestrator.create_backup(second)
        await _settle()

        assert orchestrator.get_state(first).phase is Phase.RUNNING
        assert orchestrator.get_state(second).phase is Phase.QUEUED

        gate.set()
        await orchestrator.drain()
        assert first_task.result().phase is Phase.SUCCEEDED
        assert second_task.result().phase is Phase.SUCCEEDED

    @pytest.mark.asyncio
    async def test_shutdown_cancels_jobs(self, tmp_path):
        gate = asyncio.Event()
        orchestrator = _make(tmp_path, gate=gate)
        service = orchestrator.service("postgres", "orders-db")
        events: List[str] = []
        orchestrator.add_listener(lambda event: events.append(event.name))

        task = await orchestrator.create_backup(service)
        await _settle()
        await orchestrator.shutdown()

        assert task.cancelled()
        state = orchestrator.get_state(service)
        assert state.phase is Phase.FAILED
        assert state.error_code == "JOB_CANCELLED"
        assert events == ["backup-started", "backup-failed"]
        assert (await orchestrator.list_backups(service)).files == ()

    @pytest.mark.asyncio
    async def test_shutdown_before_job_starts(self, tmp_path):
        orchestrator = _make(tmp_path)
        service = orchestrator.service("postgres", "orders-db")

        task = await orchestrator.create_backup(service)
        await orchestrator.shutdown()

        assert task.cancelled()
        state = orchestrator.get_state(service)
        assert state.phase is Phase.FAILED
        assert state.error_code == "JOB_CANCELLED"

    @pytest.mark.asyncio
    async def test_states(self, tmp_path):
        orchestrator = _make(tmp_path)

        await (await orchestrator.create_backup(orchestrator.service("postgres", "users-db")))
        await (await orchestrator.create_backup(orchestrator.service("postgres", "orders-db")))

        assert [s.service_name for s in orchestrator.states()] == ["orders-db", "users-db"]
