"""Tests for the S3 catalog against a mocked boto3 client."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from cfbackup.exceptions import NotFoundError, StorageError
from cfbackup.storage import S3Catalog


def _client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


async def _stream(*chunks: bytes):
    for chunk in chunks:
        yield chunk


async def _collect(stream) -> bytes:
    data = b""
    async for chunk in stream:
        data += chunk
    return data


T1 = datetime(2025, 1, 1, tzinfo=timezone.utc)
T2 = datetime(2025, 1, 2, tzinfo=timezone.utc)


@pytest.fixture
def client():
    client = MagicMock()
    client.create_multipart_upload.return_value = {"UploadId": "upload-1"}
    client.upload_part.side_effect = lambda **kw: {"ETag": f"etag-{kw['PartNumber']}"}
    client.head_object.return_value = {"ContentLength": 3, "LastModified": T1}
    return client


@pytest.fixture
def catalog(client):
    return S3Catalog("backups", client, part_size=4)


class TestS3CatalogList:
    @pytest.mark.asyncio
    async def test_list_sorted_most_recent_first(self, catalog, client):
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"Contents": [{"Key": "postgres/db/a.gz", "Size": 1, "LastModified": T1}]},
            {
                "Contents": [
                    {"Key": "postgres/db/b.gz", "Size": 2, "LastModified": T2},
                    {"Key": "postgres/db/", "Size": 0, "LastModified": T2},
                ]
            },
        ]
        client.get_paginator.return_value = paginator

        artifacts = await catalog.list("postgres/db/")

        paginator.paginate.assert_called_once_with(Bucket="backups", Prefix="postgres/db/")
        assert [a.filename for a in artifacts] == ["b.gz", "a.gz"]
        assert artifacts[0].size == 2

    @pytest.mark.asyncio
    async def test_list_empty(self, catalog, client):
        client.get_paginator.return_value.paginate.return_value = [{}]

        assert await catalog.list("postgres/db/") == []

    @pytest.mark.asyncio
    async def test_list_failure(self, catalog, client):
        client.get_paginator.return_value.paginate.side_effect = _client_error("AccessDenied", "ListObjectsV2")

        with pytest.raises(StorageError):
            await catalog.list("postgres/db/")


class TestS3CatalogObjects:
    @pytest.mark.asyncio
    async def test_stat(self, catalog, client):
        artifact = await catalog.stat("postgres/db/a.gz")

        assert artifact.key == "postgres/db/a.gz"
        assert artifact.filename == "a.gz"
        assert artifact.size == 3
        assert artifact.last_modified == T1

    @pytest.mark.asyncio
    async def test_stat_missing(self, catalog, client):
        client.head_object.side_effect = _client_error("404")

        with pytest.raises(NotFoundError):
            await catalog.stat("postgres/db/missing.gz")

    @pytest.mark.asyncio
    async def test_connection_failure(self, catalog, client):
        client.head_object.side_effect = EndpointConnectionError(endpoint_url="http://minio:9000")

        with pytest.raises(StorageError):
            await catalog.stat("postgres/db/a.gz")

    @pytest.mark.asyncio
    async def test_delete_checks_existence(self, catalog, client):
        client.head_object.side_effect = _client_error("404")

        with pytest.raises(NotFoundError):
            await catalog.delete("postgres/db/missing.gz")

        client.delete_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete(self, catalog, client):
        await catalog.delete("postgres/db/a.gz")

        client.delete_object.assert_called_once_with(Bucket="backups", Key="postgres/db/a.gz")

    @pytest.mark.asyncio
    async def test_get(self, catalog, client):
        body = MagicMock()
        body.read.side_effect = [b"abc", b"def", b""]
        client.get_object.return_value = {"Body": body}

        data = await _collect(await catalog.get("postgres/db/a.gz"))

        assert data == b"abcdef"
        body.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_get_missing(self, catalog, client):
        client.get_object.side_effect = _client_error("NoSuchKey", "GetObject")

        with pytest.raises(NotFoundError):
            await catalog.get("postgres/db/missing.gz")


class TestS3CatalogUpload:
    @pytest.mark.asyncio
    async def test_multipart_upload(self, catalog, client):
        artifact = await catalog.put("postgres/db/a.gz", _stream(b"abc", b"defg", b"h"))

        bodies = [c.kwargs["Body"] for c in client.upload_part.call_args_list]
        assert bodies == [b"abcdefg", b"h"]
        client.complete_multipart_upload.assert_called_once_with(
            Bucket="backups",
            Key="postgres/db/a.gz",
            UploadId="upload-1",
            MultipartUpload={
                "Parts": [
                    {"ETag": "etag-1", "PartNumber": 1},
                    {"ETag": "etag-2", "PartNumber": 2},
                ]
            },
        )
        client.abort_multipart_upload.assert_not_called()
        assert artifact.key == "postgres/db/a.gz"

    @pytest.mark.asyncio
    async def test_empty_stream_uploads_one_part(self, catalog, client):
        await catalog.put("postgres/db/empty.gz", _stream())

        assert client.upload_part.call_count == 1
        client.complete_multipart_upload.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed_stream_aborts_upload(self, catalog, client):
        async def failing():
            yield b"abcdef"
            raise RuntimeError("dump crashed")

        with pytest.raises(RuntimeError):
            await catalog.put("postgres/db/a.gz", failing())

        client.abort_multipart_upload.assert_called_once_with(
            Bucket="backups", Key="postgres/db/a.gz", UploadId="upload-1"
        )
        client.complete_multipart_upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_part_failure_aborts_upload(self, catalog, client):
        client.upload_part.side_effect = _client_error("InternalError", "UploadPart")

        with pytest.raises(StorageError):
            await catalog.put("postgres/db/a.gz", _stream(b"abcdefgh"))

        client.abort_multipart_upload.assert_called_once()

    @pytest.mark.asyncio
    async def test_encrypted_upload(self, client):
        catalog = S3Catalog("backups", client, encryption_key="secret", part_size=1024)

        await catalog.put("postgres/db/a.gz", _stream(b"plaintext dump"))

        body = client.upload_part.call_args.kwargs["Body"]
        assert b"plaintext dump" not in body
        assert len(body) == 12 + len(b"plaintext dump") + 16
