"""
Object storage backends for cache archives.

Supports AWS S3 and S3-compatible stores via boto3, plus an in-memory
backend for local development without credentials.
"""

from .client import (
    InMemoryStorageBackend,
    S3StorageBackend,
    StorageConfig,
    StoredObject,
    close_with_logging,
    create_storage_backend,
    storage_backend_from_settings,
)

__all__ = [
    "InMemoryStorageBackend",
    "S3StorageBackend",
    "StorageConfig",
    "StoredObject",
    "close_with_logging",
    "create_storage_backend",
    "storage_backend_from_settings",
]
