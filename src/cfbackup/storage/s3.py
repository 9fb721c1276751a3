"""S3-compatible object storage catalog

boto3 is synchronous; every call is pushed to a worker thread with
``asyncio.to_thread`` so the event loop keeps serving other jobs. Uploads
use multipart upload, so an object only becomes visible once the upload is
completed; a failed or cancelled upload is aborted.
"""

import asyncio
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from cfbackup.config import S3Settings
from cfbackup.exceptions import NotFoundError, StorageError
from cfbackup.logger import Logger
from cfbackup.models import BackupArtifact
from cfbackup.storage.base import CHUNK_SIZE, Catalog

PART_SIZE = 8 * 1024 * 1024  # S3 minimum part size is 5 MiB

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _is_not_found(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code", "")) in _NOT_FOUND_CODES


class S3Catalog(Catalog):
    """Catalog backed by an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        client: Any,
        encryption_key: Optional[str] = None,
        logger: Optional[Logger] = None,
        part_size: int = PART_SIZE,
    ):
        """
        Args:
            bucket: Bucket name
            client: boto3 S3 client
            encryption_key: Default key material for at-rest encryption
            logger: Logger instance
            part_size: Multipart upload part size in bytes
        """
        super().__init__(encryption_key=encryption_key, logger=logger)
        self.bucket = bucket
        self.client = client
        self.part_size = part_size

    @classmethod
    def from_settings(cls, settings: S3Settings, logger: Optional[Logger] = None) -> "S3Catalog":
        """Build a catalog (and its boto3 client) from resolved settings."""
        client = boto3.client(
            "s3",
            endpoint_url=settings.endpoint_url,
            region_name=settings.region or None,
            aws_access_key_id=settings.access_key or None,
            aws_secret_access_key=settings.secret_key or None,
            use_ssl=not settings.disable_ssl,
            verify=not settings.skip_ssl_verification,
            config=BotoConfig(signature_version="s3v4", retries={"max_attempts": 1}),
        )
        return cls(
            bucket=settings.bucket_name,
            client=client,
            encryption_key=settings.encryption_key or None,
            logger=logger,
        )

    async def _call(self, method: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(getattr(self.client, method), **kwargs)
        except ClientError as e:
            key = kwargs.get("Key", "")
            if key and _is_not_found(e):
                raise NotFoundError(f"backup not found: {key}", details={"key": key}) from None
            raise StorageError(f"S3 {method} failed: {e}", details={"key": key}) from e
        except BotoCoreError as e:
            raise StorageError(f"S3 {method} failed: {e}", details={"key": kwargs.get("Key", "")}) from e

    def _artifact(self, key: str, size: int, last_modified: Any) -> BackupArtifact:
        return BackupArtifact(
            key=key,
            filename=key.rsplit("/", 1)[-1],
            size=int(size),
            last_modified=last_modified,
        )

    def _list_pages(self, prefix: str) -> List[BackupArtifact]:
        artifacts = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                if obj["Key"].endswith("/"):
                    continue
                artifacts.append(self._artifact(obj["Key"], obj["Size"], obj["LastModified"]))
        return artifacts

    async def list(self, prefix: str) -> List[BackupArtifact]:
        try:
            artifacts = await asyncio.to_thread(self._list_pages, prefix)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"S3 list failed: {e}", details={"prefix": prefix}) from e
        return sorted(artifacts, key=lambda a: (a.last_modified, a.key), reverse=True)

    async def stat(self, key: str) -> BackupArtifact:
        head = await self._call("head_object", Bucket=self.bucket, Key=key)
        return self._artifact(key, head["ContentLength"], head["LastModified"])

    async def delete(self, key: str) -> None:
        # delete_object succeeds for missing keys, so check existence first
        await self.stat(key)
        await self._call("delete_object", Bucket=self.bucket, Key=key)
        self.logger.info("Artifact deleted", key=key, bucket=self.bucket)

    async def _open(self, key: str) -> AsyncIterator[bytes]:
        response = await self._call("get_object", Bucket=self.bucket, Key=key)
        body = response["Body"]

        async def reader() -> AsyncIterator[bytes]:
            try:
                while True:
                    try:
                        chunk = await asyncio.to_thread(body.read, CHUNK_SIZE)
                    except (BotoCoreError, OSError) as e:
                        raise StorageError(f"S3 read failed: {e}", details={"key": key}) from e
                    if not chunk:
                        break
                    yield chunk
            finally:
                body.close()

        return reader()

    async def _write(self, key: str, chunks: AsyncIterable[bytes]) -> BackupArtifact:
        upload = await self._call("create_multipart_upload", Bucket=self.bucket, Key=key)
        upload_id = upload["UploadId"]
        parts: List[Dict[str, Any]] = []
        buffer = bytearray()

        async def flush() -> None:
            number = len(parts) + 1
            resp = await self._call(
                "upload_part",
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=number,
                Body=bytes(buffer),
            )
            parts.append({"ETag": resp["ETag"], "PartNumber": number})
            buffer.clear()

        try:
            async for chunk in chunks:
                buffer += chunk
                if len(buffer) >= self.part_size:
                    await flush()
            if buffer or not parts:
                await flush()
            await self._call(
                "complete_multipart_upload",
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except BaseException:
            try:
                await asyncio.to_thread(
                    self.client.abort_multipart_upload,
                    Bucket=self.bucket,
                    Key=key,
                    UploadId=upload_id,
                )
            except (ClientError, BotoCoreError) as e:
                self.logger.error("Failed to abort multipart upload", key=key, error=str(e))
            raise

        return await self.stat(key)
