"""Base catalog interface

Defines the contract that all artifact storage backends must follow.
Encryption is applied here, so backends only ever move opaque bytes.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterable, AsyncIterator, List, Optional

from cfbackup.exceptions import NotFoundError
from cfbackup.logger import Logger, get_logger
from cfbackup.models import BackupArtifact
from cfbackup.storage.encryption import decrypt_stream, encrypt_stream

CHUNK_SIZE = 1024 * 1024


class Catalog(ABC):
    """Abstract base class for artifact storage backends.

    Keys are ``/``-separated paths, ``{type}/{name}/{filename}``. Backends
    must only make an object visible to ``list`` once it is completely
    written.
    """

    def __init__(self, encryption_key: Optional[str] = None, logger: Optional[Logger] = None):
        """
        Args:
            encryption_key: Default key material for put/get; None disables encryption
            logger: Logger instance (defaults to the "cfbackup" logger)
        """
        self.encryption_key = encryption_key or None
        self.logger = logger or get_logger("cfbackup")

    @abstractmethod
    async def list(self, prefix: str) -> List[BackupArtifact]:
        """
        List artifacts whose key starts with ``prefix``

        Returns:
            Artifacts sorted by last_modified, most recent first

        Raises:
            StorageError: If the backend fails
        """

    @abstractmethod
    async def stat(self, key: str) -> BackupArtifact:
        """
        Metadata of a single artifact

        Raises:
            NotFoundError: If the key does not exist
            StorageError: If the backend fails
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """
        Delete an artifact

        Raises:
            NotFoundError: If the key does not exist
            StorageError: If the backend fails
        """

    @abstractmethod
    async def _open(self, key: str) -> AsyncIterator[bytes]:
        """Open the raw stored bytes; raises NotFoundError before returning."""

    @abstractmethod
    async def _write(self, key: str, chunks: AsyncIterable[bytes]) -> BackupArtifact:
        """Store raw bytes under ``key`` and return the stored artifact."""

    async def get(self, key: str, encryption_key: Optional[str] = None) -> AsyncIterator[bytes]:
        """
        Open an artifact for streaming

        Args:
            key: Artifact key
            encryption_key: Key material; defaults to the catalog's key

        Returns:
            Async iterator over the (decrypted) artifact bytes

        Raises:
            NotFoundError: If the key does not exist
            StorageError: If the backend fails
        """
        stream = await self._open(key)
        material = encryption_key or self.encryption_key
        if material:
            return decrypt_stream(stream, material)
        return stream

    async def put(
        self,
        key: str,
        chunks: AsyncIterable[bytes],
        encryption_key: Optional[str] = None,
    ) -> BackupArtifact:
        """
        Store a byte stream under ``key``

        Errors raised by ``chunks`` itself propagate unchanged and leave
        nothing behind in the catalog.

        Raises:
            StorageError: If the backend fails
        """
        material = encryption_key or self.encryption_key
        if material:
            chunks = encrypt_stream(chunks, material)
        artifact = await self._write(key, chunks)
        self.logger.info(
            "Artifact stored",
            key=key,
            size=artifact.size,
            encrypted=bool(material),
        )
        return artifact

    async def exists(self, key: str) -> bool:
        try:
            await self.stat(key)
        except NotFoundError:
            return False
        return True
