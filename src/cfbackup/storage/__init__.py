"""Storage module for cfbackup

Provides the artifact catalog over object storage or the local filesystem,
with optional AES-GCM encryption at rest.
"""

from typing import Optional

from cfbackup.config import AppConfig
from cfbackup.logger import Logger

from .base import Catalog
from .encryption import decrypt_stream, derive_key, encrypt_stream
from .file_storage import FileCatalog
from .s3 import S3Catalog


def create_catalog(config: AppConfig, logger: Optional[Logger] = None) -> Catalog:
    """S3 catalog when a bucket is configured, file catalog otherwise."""
    if config.s3.bucket_name:
        return S3Catalog.from_settings(config.s3, logger=logger)
    return FileCatalog(
        config.backup_dir,
        encryption_key=config.s3.encryption_key or None,
        logger=logger,
    )


__all__ = [
    "Catalog",
    "FileCatalog",
    "S3Catalog",
    "create_catalog",
    "encrypt_stream",
    "decrypt_stream",
    "derive_key",
]
