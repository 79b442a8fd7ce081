"""Evidence blob storage providers."""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from evidence_sync.core.config import Settings
from evidence_sync.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """A blob could not be written."""
    pass


class BlobStorage(ABC):
    """Write-once storage for evidence payloads, addressed by relative path."""

    @abstractmethod
    async def upload(self, content: bytes, path: str, content_type: str = "application/json") -> str:
        """Store ``content`` at ``path`` and return the stored path."""


class LocalBlobStorage(BlobStorage):
    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root != target and self.root not in target.parents:
            raise StorageError(f"Path escapes storage root: {path}")
        return target

    def _write(self, target: Path, content: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    async def upload(self, content: bytes, path: str, content_type: str = "application/json") -> str:
        target = self._resolve(path)
        try:
            await asyncio.to_thread(self._write, target, content)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e
        logger.debug(f"Stored {len(content)} bytes at {target}")
        return path


class S3BlobStorage(BlobStorage):
    def __init__(self, bucket: str, region: Optional[str] = None, client=None):
        self.bucket = bucket
        self.client = client or boto3.client("s3", region_name=region)

    async def upload(self, content: bytes, path: str, content_type: str = "application/json") -> str:
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=path,
                Body=content,
                ContentType=content_type,
                ServerSideEncryption="AES256",
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload s3://{self.bucket}/{path}: {e}") from e
        return path


def build_storage(settings: Settings) -> BlobStorage:
    backend = settings.storage_backend.lower()
    if backend == "local":
        return LocalBlobStorage(settings.storage_local_path)
    if backend == "s3":
        if not settings.s3_bucket:
            raise ConfigurationError("S3_BUCKET is required when STORAGE_BACKEND=s3")
        return S3BlobStorage(settings.s3_bucket, region=settings.s3_region)
    raise ConfigurationError(f"Unknown storage backend: {settings.storage_backend}")
