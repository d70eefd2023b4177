"""
cachestore - storage backends for a build cache.

This package contains:
- core: the backend protocol, error taxonomy and call context
- infrastructure: the S3 and in-memory backend implementations
- config: settings and logging configuration
"""

from .core.storage import (
    CallContext,
    ConfigurationError,
    ObjectNotFound,
    OperationCancelled,
    StorageBackend,
    StorageError,
    TransferError,
)
from .infrastructure.storage import (
    InMemoryStorageBackend,
    S3StorageBackend,
    StorageConfig,
    create_storage_backend,
    storage_backend_from_settings,
)

__version__ = "0.1.0"

__all__ = [
    "CallContext",
    "ConfigurationError",
    "InMemoryStorageBackend",
    "ObjectNotFound",
    "OperationCancelled",
    "S3StorageBackend",
    "StorageBackend",
    "StorageConfig",
    "StorageError",
    "TransferError",
    "create_storage_backend",
    "storage_backend_from_settings",
]
