"""
Object storage backends for cache archives.

S3StorageBackend talks to AWS S3 or any S3-compatible store (MinIO,
Ceph, R2) through boto3. InMemoryStorageBackend keeps objects in a dict
for local development and tests.

boto3 is synchronous, so every S3 call runs in a worker thread and is
raced against the caller's CallContext. A cancelled call returns at
once; its response body is closed right away, so a worker blocked on
a stalled read is released instead of holding an executor thread.
"""

import asyncio
import functools
import hashlib
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, Optional, TypeVar

import boto3
from boto3.exceptions import Boto3Error
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ...config.settings import Settings, get_settings
from ...core.storage import (
    CallContext,
    ConfigurationError,
    ObjectNotFound,
    OperationCancelled,
    StorageBackend,
    TransferError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CANNED_ACLS = frozenset({
    "private",
    "public-read",
    "public-read-write",
    "authenticated-read",
    "aws-exec-read",
    "bucket-owner-read",
    "bucket-owner-full-control",
})

ENCRYPTION_MODES = frozenset({"AES256", "aws:kms", "aws:kms:dsse"})

# HEAD responses carry no body, so a missing key only shows up as "404"
NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})

DEFAULT_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class StorageConfig:
    """
    Configuration for an S3 or S3-compatible bucket.

    Frozen: a backend is built once from its config and shared by every
    concurrent call, so the config must not change underneath it.
    """
    bucket: str
    region: str = ""
    profile: Optional[str] = None
    acl: str = "private"
    encryption: str = ""
    endpoint_url: Optional[str] = None
    path_style: bool = False
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = field(default=None, repr=False)
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self) -> None:
        if not self.bucket or not self.bucket.strip():
            raise ConfigurationError("bucket name is required")
        if self.acl and self.acl not in CANNED_ACLS:
            raise ConfigurationError(f"unsupported canned ACL: {self.acl}")
        if self.encryption and self.encryption not in ENCRYPTION_MODES:
            raise ConfigurationError(
                f"unsupported server-side encryption mode: {self.encryption}"
            )
        if bool(self.access_key_id) != bool(self.secret_access_key):
            raise ConfigurationError(
                "access key id and secret access key must be set together"
            )
        if self.chunk_size < 1:
            raise ConfigurationError("chunk_size must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageConfig":
        return cls(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            profile=settings.s3_profile or None,
            acl=settings.s3_acl,
            encryption=settings.s3_encryption,
            endpoint_url=settings.s3_endpoint_url or None,
            path_style=settings.s3_path_style,
            access_key_id=settings.s3_access_key_id or None,
            secret_access_key=settings.s3_secret_access_key or None,
            chunk_size=settings.storage_chunk_size,
        )


# ---------------------------------------------------------------------------
# Stream helpers
# ---------------------------------------------------------------------------

class _TransferAbandoned(Exception):
    """Raised inside a worker thread once its caller stopped waiting."""
    pass


class _CallState:
    """
    Abandon flag for one call plus the streams to release with it.

    The event loop calls ``abandon()`` when the caller stops waiting;
    the worker thread registers streams with ``hold()``. Abandoning
    closes every held stream, which unblocks a read stuck on the network.
    """

    def __init__(self) -> None:
        self._abandoned = threading.Event()
        self._lock = threading.Lock()
        self._held: dict[int, tuple[Any, str]] = {}

    @property
    def abandoned(self) -> bool:
        return self._abandoned.is_set()

    def hold(self, stream: Any, description: str) -> bool:
        """
        Track ``stream`` until ``release()``.

        Returns False, after closing the stream, if the call was
        already abandoned.
        """
        with self._lock:
            if not self._abandoned.is_set():
                self._held[id(stream)] = (stream, description)
                return True
        close_with_logging(stream, description)
        return False

    def release(self, stream: Any) -> None:
        with self._lock:
            held = self._held.pop(id(stream), None)
        if held is not None:
            close_with_logging(*held)

    def abandon(self) -> None:
        with self._lock:
            self._abandoned.set()
            held, self._held = list(self._held.values()), {}
        for stream, description in held:
            close_with_logging(stream, description)


class _AbortableReader:
    """
    Read-only view over a caller's source stream.

    Once the call is abandoned the next read raises, which makes
    s3transfer stop and abort any multipart upload it started.
    """

    def __init__(self, reader: BinaryIO, state: _CallState) -> None:
        self._reader = reader
        self._state = state

    def read(self, size: int = -1) -> bytes:
        if self._state.abandoned:
            raise _TransferAbandoned("upload abandoned by caller")
        return self._reader.read(size)


def close_with_logging(stream: Any, description: str) -> None:
    """Close ``stream``; a failure is logged, not raised."""
    try:
        stream.close()
    except Exception as e:
        logger.error(
            "Failed to close stream",
            extra={"stream": description, "error": str(e)}
        )


def _is_not_found(error: ClientError) -> bool:
    code = str(error.response.get("Error", {}).get("Code", ""))
    return code in NOT_FOUND_CODES


def _log_abandoned(operation: str, key: str, task: "asyncio.Future[Any]") -> None:
    """Collect the outcome of work nobody waits on any more."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(
            "Abandoned operation finished with error",
            extra={"operation": operation, "key": key, "error": str(error)}
        )


# ---------------------------------------------------------------------------
# S3 Backend
# ---------------------------------------------------------------------------

class S3StorageBackend:
    """
    Storage backend for AWS S3 and S3-compatible stores.

    A single instance (and its boto3 client) is meant to be shared by
    all concurrent calls. boto3 clients are thread-safe and nothing
    else on the instance changes after construction.
    """

    def __init__(self, config: StorageConfig, client: Any = None) -> None:
        """
        Build the backend, resolving credentials unless ``client`` is given.

        Raises ConfigurationError if the profile or credentials cannot
        be resolved. The bucket itself is not contacted.
        """
        self._config = config
        self._client = client if client is not None else self._create_client(config)

        logger.info(
            "Initialized S3 storage backend",
            extra={
                "bucket": config.bucket,
                "region": config.region,
                "endpoint": config.endpoint_url,
            }
        )

    @staticmethod
    def _create_client(config: StorageConfig) -> Any:
        try:
            session = boto3.session.Session(
                aws_access_key_id=config.access_key_id,
                aws_secret_access_key=config.secret_access_key,
                region_name=config.region or None,
                profile_name=config.profile,
            )
            credentials = session.get_credentials()
        except BotoCoreError as e:
            logger.error(
                "Failed to resolve AWS session",
                extra={"profile": config.profile, "error": str(e)}
            )
            raise ConfigurationError(f"resolve the credentials, {e}") from e

        if credentials is None:
            logger.error(
                "No AWS credentials found",
                extra={"profile": config.profile, "region": config.region}
            )
            raise ConfigurationError("resolve the credentials, no credentials found")

        boto_config = Config(
            signature_version="s3v4",
            s3={"addressing_style": "path" if config.path_style else "auto"},
        )

        try:
            return session.client(
                "s3",
                endpoint_url=config.endpoint_url,
                config=boto_config,
            )
        except (BotoCoreError, ValueError) as e:
            logger.error(
                "Failed to create S3 client",
                extra={"endpoint": config.endpoint_url, "error": str(e)}
            )
            raise ConfigurationError(f"create the client, {e}") from e

    @property
    def config(self) -> StorageConfig:
        return self._config

    @property
    def client(self) -> Any:
        """The underlying boto3 S3 client."""
        return self._client

    async def get(
        self,
        key: str,
        writer: BinaryIO,
        ctx: Optional[CallContext] = None,
    ) -> None:
        """
        Stream the object under ``key`` into ``writer``.

        Raises ObjectNotFound for a missing key, TransferError for any
        other failure and OperationCancelled if ``ctx`` fires first. In
        the last case whatever reached ``writer`` is incomplete.
        """
        await self._run(
            "get the object",
            key,
            ctx,
            functools.partial(self._get_object, key, writer),
        )

    async def put(
        self,
        key: str,
        reader: BinaryIO,
        ctx: Optional[CallContext] = None,
    ) -> None:
        """
        Upload ``reader`` under ``key`` with the configured ACL and encryption.

        Large sources are split into a multipart upload by s3transfer.
        """
        await self._run(
            "put the object",
            key,
            ctx,
            functools.partial(self._put_object, key, reader),
        )

    async def exists(
        self,
        key: str,
        ctx: Optional[CallContext] = None,
    ) -> bool:
        """Check for ``key`` with a HEAD request; no body is transferred."""
        return await self._run(
            "head the object",
            key,
            ctx,
            functools.partial(self._head_object, key),
        )

    # -----------------------------------------------------------------------
    # Racing against the caller's context
    # -----------------------------------------------------------------------

    async def _run(
        self,
        operation: str,
        key: str,
        ctx: Optional[CallContext],
        call: Callable[[_CallState], T],
    ) -> T:
        """
        Run ``call`` in a worker thread, returning as soon as it or ``ctx`` is done.

        ``call`` receives the per-call state, abandoned when the caller
        stops waiting.
        """
        state = _CallState()

        if ctx is not None and ctx.cancelled:
            raise self._cancelled(operation, key, ctx.reason)

        work = asyncio.ensure_future(asyncio.to_thread(call, state))
        waiters = {work}
        waiter = None
        if ctx is not None:
            waiter = asyncio.ensure_future(ctx.wait())
            waiters.add(waiter)

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            state.abandon()
            work.cancel()
            raise
        finally:
            if waiter is not None and not waiter.done():
                waiter.cancel()

        if work in done:
            return work.result()

        state.abandon()
        work.add_done_callback(functools.partial(_log_abandoned, operation, key))
        raise self._cancelled(operation, key, waiter.result())

    def _cancelled(self, operation: str, key: str, reason: Optional[str]) -> OperationCancelled:
        logger.info(
            "Storage operation cancelled",
            extra={"operation": operation, "key": key, "reason": reason}
        )
        return OperationCancelled(operation, key, reason)

    def _transfer_error(self, operation: str, key: str, error: BaseException) -> TransferError:
        logger.error(
            "Storage operation failed",
            extra={
                "operation": operation,
                "bucket": self._config.bucket,
                "key": key,
                "error": str(error),
            }
        )
        return TransferError(operation, key, error)

    # -----------------------------------------------------------------------
    # Blocking calls, run in worker threads
    # -----------------------------------------------------------------------

    def _get_object(self, key: str, writer: BinaryIO, state: _CallState) -> None:
        try:
            response = self._client.get_object(Bucket=self._config.bucket, Key=key)
        except ClientError as e:
            if _is_not_found(e):
                logger.debug("Object not found", extra={"key": key})
                raise ObjectNotFound(key) from e
            raise self._transfer_error("get the object", key, e) from e
        except BotoCoreError as e:
            raise self._transfer_error("get the object", key, e) from e

        body = response["Body"]
        if not state.hold(body, "response body"):
            return

        try:
            self._copy(body, writer, state)
        except (BotoCoreError, OSError, ValueError) as e:
            # abandon() closed the body under a blocked read
            if state.abandoned:
                return
            raise self._transfer_error("copy the object", key, e) from e
        finally:
            state.release(body)

    def _copy(self, body: Any, writer: BinaryIO, state: _CallState) -> None:
        chunk_size = self._config.chunk_size
        while True:
            chunk = body.read(chunk_size)
            # the caller may have given up while this read was blocked
            if not chunk or state.abandoned:
                return
            writer.write(chunk)

    def _put_object(self, key: str, reader: BinaryIO, state: _CallState) -> None:
        try:
            self._client.upload_fileobj(
                _AbortableReader(reader, state),
                self._config.bucket,
                key,
                ExtraArgs=self._upload_args() or None,
            )
        except _TransferAbandoned:
            raise
        except (Boto3Error, BotoCoreError, ClientError, OSError, ValueError) as e:
            raise self._transfer_error("put the object", key, e) from e

        logger.debug("Uploaded object", extra={"key": key})

    def _upload_args(self) -> dict[str, str]:
        """
        Extra arguments for the upload request.

        An empty encryption mode is left out entirely. S3 rejects an
        explicit empty ServerSideEncryption header.
        """
        extra_args = {}
        if self._config.acl:
            extra_args["ACL"] = self._config.acl
        if self._config.encryption:
            extra_args["ServerSideEncryption"] = self._config.encryption
        return extra_args

    def _head_object(self, key: str, state: _CallState) -> bool:
        try:
            response = self._client.head_object(Bucket=self._config.bucket, Key=key)
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise self._transfer_error("head the object", key, e) from e
        except BotoCoreError as e:
            raise self._transfer_error("head the object", key, e) from e

        # Some S3-compatible stores (older MinIO) answer 200 for a missing
        # key but leave out the ETag every real object carries.
        etag = (response.get("ETag") or "").strip('"')
        if not etag:
            logger.debug("HEAD returned no ETag, treating as missing", extra={"key": key})
            return False
        return True


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StoredObject:
    """An object held by the in-memory backend."""
    data: bytes
    etag: str
    acl: str = ""
    encryption: str = ""


class InMemoryStorageBackend:
    """
    In-memory storage for local development and tests.

    Behaves like the S3 backend from the caller's side: same errors,
    same handling of an already-cancelled context. Nothing is persisted.
    """

    def __init__(self, acl: str = "private", encryption: str = "") -> None:
        self._objects: dict[str, StoredObject] = {}
        self._acl = acl
        self._encryption = encryption
        logger.info("Initialized mock storage backend (in-memory)")

    async def get(
        self,
        key: str,
        writer: BinaryIO,
        ctx: Optional[CallContext] = None,
    ) -> None:
        self._check_context("get the object", key, ctx)

        stored = self._objects.get(key)
        if stored is None:
            raise ObjectNotFound(key)

        writer.write(stored.data)

    async def put(
        self,
        key: str,
        reader: BinaryIO,
        ctx: Optional[CallContext] = None,
    ) -> None:
        self._check_context("put the object", key, ctx)

        data = reader.read()
        self._objects[key] = StoredObject(
            data=data,
            etag=f'"{hashlib.md5(data, usedforsecurity=False).hexdigest()}"',
            acl=self._acl,
            encryption=self._encryption,
        )

        logger.debug(
            "Stored object in mock storage",
            extra={"key": key, "size_bytes": len(data)}
        )

    async def exists(
        self,
        key: str,
        ctx: Optional[CallContext] = None,
    ) -> bool:
        self._check_context("head the object", key, ctx)
        return key in self._objects

    def stored(self, key: str) -> Optional[StoredObject]:
        """Return the stored object for inspection, or None."""
        return self._objects.get(key)

    def _check_context(self, operation: str, key: str, ctx: Optional[CallContext]) -> None:
        if ctx is not None and ctx.cancelled:
            raise OperationCancelled(operation, key, ctx.reason)


# ---------------------------------------------------------------------------
# Factory Functions
# ---------------------------------------------------------------------------

def create_storage_backend(
    config: Optional[StorageConfig] = None,
    mock_mode: bool = False,
) -> StorageBackend:
    """
    Create a storage backend.

    Args:
        config: Storage configuration (required if not mock_mode)
        mock_mode: If True, return the in-memory backend

    Returns:
        StorageBackend implementation (S3 or in-memory)
    """
    if mock_mode:
        if config is None:
            return InMemoryStorageBackend()
        return InMemoryStorageBackend(acl=config.acl, encryption=config.encryption)

    if config is None:
        raise ConfigurationError("config is required when not in mock mode")

    return S3StorageBackend(config)


def storage_backend_from_settings(settings: Optional[Settings] = None) -> StorageBackend:
    """
    Create the backend described by the environment.

    Raises ConfigurationError listing every missing setting, rather
    than failing on the first one.
    """
    settings = settings or get_settings()

    missing = settings.validate_required_fields()
    if missing:
        logger.error(
            "Missing required storage configuration",
            extra={"missing_fields": missing}
        )
        raise ConfigurationError(f"missing required settings: {', '.join(missing)}")

    if settings.storage_mock_mode:
        return create_storage_backend(mock_mode=True)

    return create_storage_backend(StorageConfig.from_settings(settings))
