"""Storage backend protocol, errors and call context."""

from .backend import (
    ConfigurationError,
    ObjectNotFound,
    OperationCancelled,
    StorageBackend,
    StorageError,
    TransferError,
)
from .context import CallContext

__all__ = [
    "CallContext",
    "ConfigurationError",
    "ObjectNotFound",
    "OperationCancelled",
    "StorageBackend",
    "StorageError",
    "TransferError",
]
