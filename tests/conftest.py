from __future__ import annotations

import os
import sys
import threading
from datetime import UTC, datetime, timedelta
from typing import Callable, Dict, Optional

import pytest
from botocore.exceptions import ClientError


def pytest_configure():
    # Ensure `src/` is importable as top-level for `common.*` / `storage.*` imports
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


def client_error(code: str, status: int, operation: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class FakeClock:
    def __init__(self, t: Optional[datetime] = None) -> None:
        self.t = t or datetime(2025, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:  # acts like datetime.now(UTC)
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += timedelta(seconds=seconds)


class _FakeBody:
    def __init__(self, data: bytes) -> None:
        self._data = data

    def read(self) -> bytes:
        return self._data


class _FakePaginator:
    def __init__(self, s3: "FakeS3") -> None:
        self._s3 = s3

    def paginate(self, *, Bucket: str, Prefix: str = "", Delimiter: Optional[str] = None):
        keys = self._s3.keys(Bucket)
        contents = []
        prefixes = []
        for key in keys:
            if not key.startswith(Prefix):
                continue
            rest = key[len(Prefix):]
            if Delimiter and Delimiter in rest:
                common = Prefix + rest.split(Delimiter, 1)[0] + Delimiter
                if common not in prefixes:
                    prefixes.append(common)
                continue
            contents.append({"Key": key})
        self._s3.list_pages = 0
        size = self._s3.page_size
        for i in range(0, max(len(contents), 1), size):
            self._s3.list_pages += 1
            page = {"Contents": contents[i : i + size]} if contents else {}
            if i == 0 and prefixes:
                page["CommonPrefixes"] = [{"Prefix": p} for p in prefixes]
            yield page


class FakeS3:
    """Thread-safe in-memory stand-in for a boto3 S3 client."""

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None, page_size: int = 2) -> None:
        self._objects: Dict[tuple, Dict] = {}
        self._mutex = threading.Lock()
        self._clock = clock or (lambda: datetime.now(UTC))
        self.page_size = page_size
        self.list_pages = 0
        self.conditional_puts = 0
        self._writes = 0

    def keys(self, bucket: str):
        with self._mutex:
            return sorted(k for (b, k) in self._objects if b == bucket)

    def raw(self, bucket: str, key: str) -> Optional[bytes]:
        with self._mutex:
            item = self._objects.get((bucket, key))
            return item["Body"] if item else None

    def put_object(
        self,
        *,
        Bucket: str,
        Key: str,
        Body: bytes,
        ContentType: Optional[str] = None,
        IfNoneMatch: Optional[str] = None,
    ):
        with self._mutex:
            if IfNoneMatch == "*":
                self.conditional_puts += 1
                if (Bucket, Key) in self._objects:
                    raise client_error("PreconditionFailed", 412, "PutObject")
            self._writes += 1
            etag = f'"fake-{self._writes}"'
            self._objects[(Bucket, Key)] = {"Body": bytes(Body), "LastModified": self._clock(), "ETag": etag}
        return {"ETag": etag}

    def get_object(self, *, Bucket: str, Key: str):
        with self._mutex:
            item = self._objects.get((Bucket, Key))
        if not item:
            raise client_error("NoSuchKey", 404, "GetObject")
        return {"Body": _FakeBody(item["Body"]), "LastModified": item["LastModified"]}

    def head_object(self, *, Bucket: str, Key: str):
        with self._mutex:
            item = self._objects.get((Bucket, Key))
        if not item:
            # HEAD responses carry no body, so S3 reports the bare status code
            raise client_error("404", 404, "HeadObject")
        return {
            "LastModified": item["LastModified"],
            "ContentLength": len(item["Body"]),
            "ETag": item["ETag"],
        }

    def delete_object(self, *, Bucket: str, Key: str, IfMatch: Optional[str] = None):
        with self._mutex:
            if IfMatch is not None:
                item = self._objects.get((Bucket, Key))
                if item is None:
                    raise client_error("NoSuchKey", 404, "DeleteObject")
                if item["ETag"] != IfMatch:
                    raise client_error("PreconditionFailed", 412, "DeleteObject")
            self._objects.pop((Bucket, Key), None)
        return {}

    def get_paginator(self, name: str):
        assert name == "list_objects_v2"
        return _FakePaginator(self)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_s3(clock) -> FakeS3:
    return FakeS3(clock=clock)


@pytest.fixture
def make_s3():
    return FakeS3


@pytest.fixture
def s3_error():
    return client_error
