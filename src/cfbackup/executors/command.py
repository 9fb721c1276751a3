"""Executors that drive a dump/restore command line tool.

The tool's stdout is the backup stream (gzip-compressed in-process unless
the tool compresses itself); for restores the stream is fed to the tool's
stdin. Cancelling the surrounding task kills the child process.
"""

import asyncio
import os
import zlib
from abc import abstractmethod
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, ClassVar, Dict, List, Optional, Tuple
from urllib.parse import unquote, urlparse

from cfbackup.exceptions import ExecutionError
from cfbackup.executors.base import Executor, Operation

CHUNK_SIZE = 256 * 1024
STDERR_TAIL = 4096
GZIP_WBITS = 16 + zlib.MAX_WBITS


@dataclass(frozen=True)
class Connection:
    host: str
    port: int
    username: str
    password: str
    database: str
    uri: str


class CommandExecutor(Executor):
    """Base class for executors backed by an external process."""

    compress: ClassVar[bool] = True
    extension: ClassVar[str] = "gz"
    default_port: ClassVar[int] = 0

    @abstractmethod
    def backup_command(self) -> List[str]:
        """Argument vector of the dump tool."""

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        if Operation.RESTORE in cls.capabilities and cls.restore_command is CommandExecutor.restore_command:
            raise TypeError(f"{cls.__name__} declares restore but does not override restore_command")

    def restore_command(self) -> List[str]:
        """Argument vector of the restore tool; every variant declaring RESTORE overrides it."""
        raise NotImplementedError

    def environment(self) -> Dict[str, str]:
        """Extra environment for the child process (credentials)."""
        return {}

    @property
    def connection(self) -> Connection:
        """Binding credentials, with blanks filled in from the URI."""
        binding = self.service.binding
        parsed = urlparse(binding.uri) if binding.uri else None

        host = binding.host or (parsed.hostname if parsed else "") or ""
        port = binding.port or (parsed.port if parsed and parsed.port else 0) or self.default_port
        username = binding.username or (unquote(parsed.username) if parsed and parsed.username else "")
        password = binding.password or (unquote(parsed.password) if parsed and parsed.password else "")
        database = binding.database or (parsed.path.lstrip("/") if parsed else "")

        return Connection(
            host=host,
            port=port,
            username=username,
            password=password,
            database=database,
            uri=binding.uri,
        )

    async def _spawn(self, argv: List[str], stdin: Optional[int]) -> asyncio.subprocess.Process:
        env = {**os.environ, **self.environment()}
        self.logger.debug("Starting command", command=argv[0], service_name=self.service.name)
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=stdin if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE if stdin is None else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise ExecutionError(
                f"could not start {argv[0]}: {e}",
                details={"command": argv[0]},
            ) from e

    async def _read_stderr(self, stream: asyncio.StreamReader) -> bytes:
        tail = b""
        async for line in stream:
            if self.options.log_stderr:
                self.logger.warning(
                    line.decode("utf-8", "replace").rstrip(),
                    service_name=self.service.name,
                )
            tail = (tail + line)[-STDERR_TAIL:]
        return tail

    async def _finish(
        self,
        proc: asyncio.subprocess.Process,
        stderr_task: "asyncio.Task[bytes]",
        argv: List[str],
    ) -> None:
        returncode = await proc.wait()
        stderr = await stderr_task
        if returncode != 0:
            raise ExecutionError(
                f"{argv[0]} exited with status {returncode}",
                details={
                    "command": argv[0],
                    "returncode": returncode,
                    "stderr": stderr.decode("utf-8", "replace").strip(),
                },
            )

    async def _cleanup(self, proc: asyncio.subprocess.Process, stderr_task: "asyncio.Task[bytes]") -> None:
        if proc.returncode is None:
            self.logger.warning("Killing unfinished command", service_name=self.service.name, pid=proc.pid)
            proc.kill()
            await proc.wait()
        if not stderr_task.done():
            stderr_task.cancel()

    async def backup(self) -> Tuple[AsyncIterator[bytes], str]:
        return self._produce(self.backup_command()), self.extension

    async def _produce(self, argv: List[str]) -> AsyncIterator[bytes]:
        # Spawned on first iteration, so a stream that is never consumed starts nothing
        proc = await self._spawn(argv, stdin=None)
        assert proc.stdout is not None and proc.stderr is not None
        stderr_task = asyncio.ensure_future(self._read_stderr(proc.stderr))
        compressor = zlib.compressobj(6, zlib.DEFLATED, GZIP_WBITS) if self.compress else None

        try:
            while True:
                chunk = await proc.stdout.read(CHUNK_SIZE)
                if not chunk:
                    break
                out = compressor.compress(chunk) if compressor else chunk
                if out:
                    yield out

            # The exit status decides success before the last bytes are released
            await self._finish(proc, stderr_task, argv)
            if compressor:
                yield compressor.flush()
        finally:
            await self._cleanup(proc, stderr_task)

    async def restore(self, chunks: AsyncIterable[bytes]) -> None:
        if not self.supports(Operation.RESTORE):
            await super().restore(chunks)
            return

        argv = self.restore_command()
        proc = await self._spawn(argv, stdin=asyncio.subprocess.PIPE)
        assert proc.stdin is not None and proc.stderr is not None
        stderr_task = asyncio.ensure_future(self._read_stderr(proc.stderr))
        decompressor = zlib.decompressobj(GZIP_WBITS) if self.compress else None

        try:
            try:
                async for chunk in chunks:
                    data = decompressor.decompress(chunk) if decompressor else chunk
                    if data:
                        proc.stdin.write(data)
                        await proc.stdin.drain()
                if decompressor:
                    data = decompressor.flush()
                    if not decompressor.eof:
                        raise ExecutionError("backup stream is truncated")
                    if data:
                        proc.stdin.write(data)
                        await proc.stdin.drain()
                proc.stdin.close()
            except zlib.error as e:
                raise ExecutionError(f"backup stream is corrupt: {e}") from e
            except (BrokenPipeError, ConnectionResetError):
                # The tool went away mid-stream; its exit status explains why
                await self._finish(proc, stderr_task, argv)
                raise ExecutionError(f"{argv[0]} stopped reading its input") from None

            await self._finish(proc, stderr_task, argv)
        finally:
            await self._cleanup(proc, stderr_task)
