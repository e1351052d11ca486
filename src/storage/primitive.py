from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError, ParamValidationError

from common.errors import (
    AlreadyExistsError,
    ConditionalWriteUnsupportedError,
    NotFoundError,
    PreconditionFailedError,
    TransientError,
)

from .models import ObjectInfo, StorageConfig


logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
# S3 answers 412 when the key exists and 409 when another conditional write
# on the same key is in flight; OSS reports its own codes.
_ALREADY_EXISTS_CODES = {
    "PreconditionFailed",
    "412",
    "ConditionalRequestConflict",
    "409",
    "ObjectAlreadyExists",
    "FileAlreadyExists",
}
_UNSUPPORTED_CODES = {"NotImplemented", "501"}


class PrimitiveStore(Protocol):
    """Flat object-store operations the key/value store and the lock are built on."""

    def put(self, key: str, body: bytes, *, conditional: bool = False) -> None: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str, *, if_match: Optional[str] = None) -> None: ...

    def head(self, key: str) -> ObjectInfo: ...

    def list(self, prefix: str, *, delimiter: Optional[str] = None) -> Iterator[str]: ...


def _error_code(e: ClientError) -> str:
    code = e.response.get("Error", {}).get("Code")
    if code:
        return str(code)
    status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return str(status) if status is not None else ""


def build_s3_client(config: StorageConfig) -> Any:
    kwargs: Dict[str, Any] = {}
    if config.region:
        kwargs["region_name"] = config.region
    if config.endpoint:
        kwargs["endpoint_url"] = config.endpoint
    if config.access_key_id and config.secret_access_key:
        kwargs["aws_access_key_id"] = config.access_key_id
        kwargs["aws_secret_access_key"] = config.secret_access_key
    return boto3.client("s3", **kwargs)


class S3PrimitiveStore:
    """
    `PrimitiveStore` over a boto3 S3 client.

    - Missing objects surface as `NotFoundError` on get/head/delete.
    - `put(conditional=True)` sends `IfNoneMatch="*"`; an existing object
      surfaces as `AlreadyExistsError`. Endpoints without conditional-write
      support raise `ConditionalWriteUnsupportedError`.
    - `delete(if_match=etag)` raises `PreconditionFailedError` once the object
      has been replaced since it was read.
    - Any other SDK failure is wrapped in `TransientError`.
    """

    def __init__(self, *, s3: Any, bucket: str) -> None:
        self._s3 = s3
        self._bucket = bucket

    @property
    def bucket(self) -> str:
        return self._bucket

    def put(self, key: str, body: bytes, *, conditional: bool = False) -> None:
        kwargs: Dict[str, Any] = {
            "Bucket": self._bucket,
            "Key": key,
            "Body": body,
            "ContentType": "application/octet-stream",
        }
        if conditional:
            kwargs["IfNoneMatch"] = "*"
        try:
            self._s3.put_object(**kwargs)
        except ParamValidationError as e:
            if conditional:
                raise ConditionalWriteUnsupportedError(
                    f"s3://{self._bucket} client does not accept IfNoneMatch"
                ) from e
            raise TransientError(f"writing object {key}: {e}") from e
        except ClientError as e:
            code = _error_code(e)
            if conditional and code in _ALREADY_EXISTS_CODES:
                raise AlreadyExistsError(f"object {key} already exists") from e
            if conditional and code in _UNSUPPORTED_CODES:
                raise ConditionalWriteUnsupportedError(
                    f"s3://{self._bucket} does not support conditional writes"
                ) from e
            raise TransientError(f"writing object {key}: {code}") from e
        except BotoCoreError as e:
            raise TransientError(f"writing object {key}: {e}") from e

    def get(self, key: str) -> bytes:
        try:
            resp = self._s3.get_object(Bucket=self._bucket, Key=key)
            return resp["Body"].read()
        except ClientError as e:
            code = _error_code(e)
            if code in _NOT_FOUND_CODES:
                raise NotFoundError(f"object {key} not found") from e
            raise TransientError(f"loading object {key}: {code}") from e
        except BotoCoreError as e:
            raise TransientError(f"loading object {key}: {e}") from e

    def delete(self, key: str, *, if_match: Optional[str] = None) -> None:
        """Delete `key`; with `if_match`, only while its ETag still matches.

        Endpoints that cannot do conditional deletes get a plain delete.
        """
        kwargs: Dict[str, Any] = {"Bucket": self._bucket, "Key": key}
        if if_match:
            kwargs["IfMatch"] = if_match
        try:
            self._s3.delete_object(**kwargs)
        except ParamValidationError as e:
            if not if_match:
                raise TransientError(f"deleting object {key}: {e}") from e
            logger.debug("client does not accept IfMatch on delete, deleting %s unconditionally", key)
            self.delete(key)
        except ClientError as e:
            code = _error_code(e)
            if code in _NOT_FOUND_CODES:
                raise NotFoundError(f"object {key} not found") from e
            if if_match and code in ("PreconditionFailed", "412"):
                raise PreconditionFailedError(f"object {key} changed since it was read") from e
            if if_match and code in _UNSUPPORTED_CODES:
                logger.debug("endpoint does not support conditional delete, deleting %s unconditionally", key)
                self.delete(key)
                return
            raise TransientError(f"deleting object {key}: {code}") from e
        except BotoCoreError as e:
            raise TransientError(f"deleting object {key}: {e}") from e

    def head(self, key: str) -> ObjectInfo:
        try:
            resp = self._s3.head_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            code = _error_code(e)
            if code in _NOT_FOUND_CODES:
                raise NotFoundError(f"object {key} not found") from e
            raise TransientError(f"loading attributes for {key}: {code}") from e
        except BotoCoreError as e:
            raise TransientError(f"loading attributes for {key}: {e}") from e
        modified = resp.get("LastModified")
        if modified is None:
            raise TransientError(f"loading attributes for {key}: no Last-Modified in response")
        etag = resp.get("ETag")
        return ObjectInfo(
            modified=modified,
            size=int(resp.get("ContentLength", 0)),
            etag=etag if isinstance(etag, str) else None,
        )

    def list(self, prefix: str, *, delimiter: Optional[str] = None) -> Iterator[str]:
        """Yield every key under `prefix`, page by page, in listing order."""
        kwargs: Dict[str, Any] = {"Bucket": self._bucket, "Prefix": prefix}
        if delimiter:
            kwargs["Delimiter"] = delimiter
        try:
            paginator = self._s3.get_paginator("list_objects_v2")
            for page in paginator.paginate(**kwargs):
                for obj in page.get("Contents", []):
                    yield obj["Key"]
        except ClientError as e:
            raise TransientError(f"listing objects under {prefix!r}: {_error_code(e)}") from e
        except BotoCoreError as e:
            raise TransientError(f"listing objects under {prefix!r}: {e}") from e
