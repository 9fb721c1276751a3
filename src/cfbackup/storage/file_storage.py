"""File-based catalog implementation

Stores artifacts below a root directory using the artifact key as the
relative path. Uploads go to a hidden ``.part`` file that is renamed into
place once complete, so listings never observe partial artifacts.
"""

import asyncio
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, List, Optional

from cfbackup.exceptions import NotFoundError, StorageError
from cfbackup.logger import Logger
from cfbackup.models import BackupArtifact
from cfbackup.storage.base import CHUNK_SIZE, Catalog


class FileCatalog(Catalog):
    """Local filesystem catalog, used when no object storage is configured."""

    def __init__(
        self,
        storage_dir: str | Path,
        encryption_key: Optional[str] = None,
        logger: Optional[Logger] = None,
    ):
        """
        Args:
            storage_dir: Root directory for artifacts
            encryption_key: Default key material for at-rest encryption
            logger: Logger instance
        """
        super().__init__(encryption_key=encryption_key, logger=logger)
        self.storage_dir = Path(storage_dir)

        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create storage directory: {e}") from e

        self.logger.info("FileCatalog initialized", storage_dir=str(self.storage_dir))

    def _get_filepath(self, key: str) -> Path:
        path = (self.storage_dir / key).resolve()
        if self.storage_dir.resolve() not in path.parents:
            raise StorageError(f"key escapes the storage directory: {key}")
        return path

    def _artifact(self, path: Path) -> BackupArtifact:
        st = path.stat()
        return BackupArtifact(
            key=path.relative_to(self.storage_dir.resolve()).as_posix(),
            filename=path.name,
            size=st.st_size,
            last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )

    def _scan(self, prefix: str) -> List[BackupArtifact]:
        root = self.storage_dir.resolve()
        # Only walk the deepest directory the prefix names
        base = root / prefix.rsplit("/", 1)[0] if "/" in prefix else root
        if not base.is_dir():
            return []

        artifacts = []
        for path in base.rglob("*"):
            if not path.is_file() or path.name.startswith("."):
                continue
            key = path.relative_to(root).as_posix()
            if key.startswith(prefix):
                artifacts.append(self._artifact(path))

        return sorted(artifacts, key=lambda a: (a.last_modified, a.key), reverse=True)

    async def list(self, prefix: str) -> List[BackupArtifact]:
        try:
            return await asyncio.to_thread(self._scan, prefix)
        except OSError as e:
            raise StorageError(f"Failed to list '{prefix}': {e}") from e

    async def stat(self, key: str) -> BackupArtifact:
        path = self._get_filepath(key)
        try:
            return await asyncio.to_thread(self._artifact, path)
        except FileNotFoundError:
            raise NotFoundError(f"backup not found: {key}", details={"key": key}) from None
        except OSError as e:
            raise StorageError(f"Failed to stat '{key}': {e}") from e

    async def delete(self, key: str) -> None:
        path = self._get_filepath(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            raise NotFoundError(f"backup not found: {key}", details={"key": key}) from None
        except OSError as e:
            raise StorageError(f"Failed to delete '{key}': {e}") from e
        self.logger.info("Artifact deleted", key=key)

    async def _open(self, key: str) -> AsyncIterator[bytes]:
        path = self._get_filepath(key)
        try:
            handle = await asyncio.to_thread(open, path, "rb")
        except FileNotFoundError:
            raise NotFoundError(f"backup not found: {key}", details={"key": key}) from None
        except OSError as e:
            raise StorageError(f"Failed to read '{key}': {e}") from e

        async def reader() -> AsyncIterator[bytes]:
            try:
                while True:
                    try:
                        chunk = await asyncio.to_thread(handle.read, CHUNK_SIZE)
                    except OSError as e:
                        raise StorageError(f"Failed to read '{key}': {e}") from e
                    if not chunk:
                        break
                    yield chunk
            finally:
                handle.close()

        return reader()

    async def _write(self, key: str, chunks: AsyncIterable[bytes]) -> BackupArtifact:
        path = self._get_filepath(key)
        part = path.with_name(f".{path.name}.part")

        try:
            await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
            handle = await asyncio.to_thread(open, part, "wb")
        except OSError as e:
            raise StorageError(f"Failed to write '{key}': {e}") from e

        try:
            with handle:
                async for chunk in chunks:
                    try:
                        await asyncio.to_thread(handle.write, chunk)
                    except OSError as e:
                        raise StorageError(f"Failed to write '{key}': {e}") from e
            try:
                await asyncio.to_thread(os.replace, part, path)
            except OSError as e:
                raise StorageError(f"Failed to write '{key}': {e}") from e
        except BaseException:
            # Never leave a partial object behind, whatever stopped the upload
            part.unlink(missing_ok=True)
            raise

        return await self.stat(key)
