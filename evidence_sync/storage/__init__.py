"""Evidence blob storage."""

from .blob import BlobStorage, LocalBlobStorage, S3BlobStorage, StorageError, build_storage

__all__ = ["BlobStorage", "LocalBlobStorage", "S3BlobStorage", "StorageError", "build_storage"]
