"""
Storage backend contract and error taxonomy.

A backend maps three operations onto some remote blob store:
fetch an object into a sink, store an object from a source, and
check whether an object exists. The cache layer that decides which
keys to move lives elsewhere and only sees this protocol.
"""

from typing import BinaryIO, Optional, Protocol

from .context import CallContext


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class StorageError(Exception):
    """Base class for all storage backend failures."""
    pass


class ConfigurationError(StorageError, ValueError):
    """
    Raised when a backend cannot be configured.

    Covers invalid settings (empty bucket, unknown ACL) and credentials
    or profiles that cannot be resolved. Not retryable without an
    operator fixing the environment.
    """
    pass


class ObjectNotFound(StorageError):
    """The requested key does not exist in the bucket."""

    def __init__(self, key: str, operation: str = "get the object") -> None:
        self.key = key
        self.operation = operation
        super().__init__(f"{operation} {key}: not found")


class TransferError(StorageError):
    """
    Wraps a network, permission or I/O fault raised during a service call.

    The original exception is always chained as ``__cause__``.
    """

    def __init__(self, operation: str, key: str, cause: BaseException) -> None:
        self.operation = operation
        self.key = key
        super().__init__(f"{operation} {key}, {cause}")


class OperationCancelled(StorageError):
    """The caller's context was cancelled or hit its deadline first."""

    def __init__(self, operation: str, key: str, reason: Optional[str] = None) -> None:
        self.operation = operation
        self.key = key
        self.reason = reason or "cancelled"
        super().__init__(f"{operation} {key}: {self.reason}")


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class StorageBackend(Protocol):
    """
    Interface every storage backend implements.

    Implementations are shared across concurrent callers, so they must
    not keep per-call state on the instance. Streams belong to the
    caller: backends read or write them during the call and never
    close them.
    """

    async def get(
        self,
        key: str,
        writer: BinaryIO,
        ctx: Optional[CallContext] = None,
    ) -> None:
        """Write the object stored under ``key`` into ``writer``."""
        ...

    async def put(
        self,
        key: str,
        reader: BinaryIO,
        ctx: Optional[CallContext] = None,
    ) -> None:
        """Upload everything readable from ``reader`` under ``key``."""
        ...

    async def exists(
        self,
        key: str,
        ctx: Optional[CallContext] = None,
    ) -> bool:
        """Return True if an object is stored under ``key``."""
        ...
