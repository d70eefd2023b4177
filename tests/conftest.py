"""
Shared fixtures for storage backend tests.

Nothing here touches the network. Real boto3 clients are wrapped in a
botocore Stubber; behaviour a Stubber cannot express (stalled bodies,
streaming uploads) goes through FakeS3Client instead.
"""

import threading
import time
from typing import Optional

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from cachestore.config.settings import get_settings
from cachestore.infrastructure.storage import StorageConfig


BUCKET = "cache-bucket"


class FakeBody:
    """
    Stand-in for botocore's StreamingBody.

    With ``stall`` set, the first read blocks until the event is released,
    simulating a transfer that stopped making progress. Closing the body
    unblocks a stalled read, the way closing a socket does.
    """

    def __init__(self, data: bytes = b"", stall: Optional[threading.Event] = None) -> None:
        self._data = data
        self._offset = 0
        self._stall = stall
        self.read_started = threading.Event()
        self.read_finished = threading.Event()
        self.closed = threading.Event()

    def read(self, size: int = -1) -> bytes:
        self.read_started.set()
        try:
            if self._stall is not None:
                deadline = time.monotonic() + 5
                while not self._stall.wait(timeout=0.01):
                    if self.closed.is_set() or time.monotonic() > deadline:
                        break
                self._stall = None
            if self.closed.is_set():
                raise ValueError("I/O operation on closed file.")
            if size < 0:
                size = len(self._data) - self._offset
            chunk = self._data[self._offset:self._offset + size]
            self._offset += len(chunk)
            return chunk
        finally:
            self.read_finished.set()

    def close(self) -> None:
        self.closed.set()


def client_error(code: str, operation: str, status: int = 404) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeS3Client:
    """Minimal in-memory S3 client exposing the calls the backend makes."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.bodies: list[FakeBody] = []
        self.uploads: list[dict] = []
        self.upload_errors: list[BaseException] = []
        self.stall: Optional[threading.Event] = None
        self.body_created = threading.Event()
        self.upload_started = threading.Event()
        self.upload_finished = threading.Event()

    def get_object(self, Bucket: str, Key: str) -> dict:
        if Key not in self.objects:
            raise client_error("NoSuchKey", "GetObject")
        body = FakeBody(self.objects[Key], stall=self.stall)
        self.bodies.append(body)
        self.body_created.set()
        return {"Body": body, "ETag": '"etag"'}

    def upload_fileobj(self, Fileobj, Bucket: str, Key: str, ExtraArgs=None) -> None:
        self.uploads.append({"Bucket": Bucket, "Key": Key, "ExtraArgs": ExtraArgs})
        self.upload_started.set()
        try:
            if self.stall is not None:
                self.stall.wait(timeout=5)
            self.objects[Key] = Fileobj.read()
        except BaseException as e:
            self.upload_errors.append(e)
            raise
        finally:
            self.upload_finished.set()

    def head_object(self, Bucket: str, Key: str) -> dict:
        if Key not in self.objects:
            raise client_error("404", "HeadObject")
        return {"ETag": '"etag"', "ContentLength": len(self.objects[Key])}


@pytest.fixture
def storage_config() -> StorageConfig:
    return StorageConfig(bucket=BUCKET, region="us-east-1")


@pytest.fixture
def fake_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def stubbed_client():
    """A real S3 client with every request answered by a Stubber."""
    client = boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
