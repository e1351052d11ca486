from __future__ import annotations

import logging
import os
import threading
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from common.crypto import Codec, codec_from_key_file

from .kv_store import KeyValueStore
from .lock import DistributedLock, utcnow
from .models import KeyInfo, StorageConfig
from .primitive import PrimitiveStore, S3PrimitiveStore, build_s3_client


logger = logging.getLogger(__name__)

# Environment variable names for convenience configuration
ENV_BUCKET = "CERTSTORE_BUCKET"
ENV_REGION = "CERTSTORE_REGION"
ENV_ENDPOINT = "CERTSTORE_ENDPOINT"
ENV_ACCESS_KEY_ID = "CERTSTORE_ACCESS_KEY_ID"
ENV_SECRET_ACCESS_KEY = "CERTSTORE_SECRET_ACCESS_KEY"
ENV_KEY_FILE = "CERTSTORE_KEY_FILE"
ENV_LOCK_EXPIRATION = "CERTSTORE_LOCK_EXPIRATION"
ENV_LOCK_POLL_INTERVAL = "CERTSTORE_LOCK_POLL_INTERVAL"

_ENV_FIELDS = {
    ENV_REGION: "region",
    ENV_ENDPOINT: "endpoint",
    ENV_ACCESS_KEY_ID: "access_key_id",
    ENV_SECRET_ACCESS_KEY: "secret_access_key",
    ENV_KEY_FILE: "key_file",
    ENV_LOCK_EXPIRATION: "lock_expiration",
    ENV_LOCK_POLL_INTERVAL: "lock_poll_interval",
}


def _getenv(name: str) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else None


class S3Storage:
    """
    Encrypted key/value storage plus a distributed lock, backed by one S3 bucket.

    Usage
    - Build from a `StorageConfig` (or env) and call store/load/delete/exists/
      list/stat for records.
    - Wrap multi-step work in `lock(key)` / `unlock(key)` or `with storage.locked(key):`.
    - Lock markers live at `<key>.lock` in the same bucket; do not use that
      suffix for record keys.

    Environment variables (see `from_env`)
    - `CERTSTORE_BUCKET` (required), `CERTSTORE_REGION`, `CERTSTORE_ENDPOINT`
    - `CERTSTORE_ACCESS_KEY_ID`, `CERTSTORE_SECRET_ACCESS_KEY`
    - `CERTSTORE_KEY_FILE`: key material path; cleartext storage when unset
    - `CERTSTORE_LOCK_EXPIRATION`, `CERTSTORE_LOCK_POLL_INTERVAL`: seconds
    """

    def __init__(
        self,
        *,
        primitive: PrimitiveStore,
        codec: Codec,
        lock: DistributedLock,
        bucket: str,
    ) -> None:
        self._bucket = bucket
        self._kv = KeyValueStore(primitive, codec)
        self._lock = lock

    # -------- Construction helpers --------
    @classmethod
    def from_config(
        cls,
        config: StorageConfig,
        *,
        s3: Optional[object] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "S3Storage":
        primitive = S3PrimitiveStore(s3=s3 or build_s3_client(config), bucket=config.bucket)
        codec = codec_from_key_file(config.key_file)
        logger.info(
            "opening s3://%s (encryption %s)",
            config.bucket,
            "enabled" if config.key_file else "disabled",
        )
        return cls(
            primitive=primitive,
            codec=codec,
            lock=DistributedLock(primitive, config.lock_config(), clock=clock),
            bucket=config.bucket,
        )

    @classmethod
    def from_env(cls, *, s3: Optional[object] = None) -> "S3Storage":
        bucket = _getenv(ENV_BUCKET)
        if not bucket:
            raise RuntimeError(f"Missing required environment variables for S3 storage: {ENV_BUCKET}")
        values: Dict[str, Any] = {"bucket": bucket}
        for env_name, field in _ENV_FIELDS.items():
            val = _getenv(env_name)
            if val is not None:
                values[field] = val
        return cls.from_config(StorageConfig(**values), s3=s3)

    @property
    def bucket(self) -> str:
        return self._bucket

    # -------- Records --------
    def store(self, key: str, value: bytes) -> None:
        self._kv.store(key, value)

    def load(self, key: str) -> bytes:
        return self._kv.load(key)

    def delete(self, key: str) -> None:
        self._kv.delete(key)

    def exists(self, key: str) -> bool:
        return self._kv.exists(key)

    def list(self, prefix: str, recursive: bool = False) -> List[str]:
        return self._kv.list(prefix, recursive)

    def stat(self, key: str) -> KeyInfo:
        return self._kv.stat(key)

    # -------- Locking --------
    def lock(self, key: str, *, cancel: Optional[threading.Event] = None) -> None:
        self._lock.lock(key, cancel=cancel)

    def unlock(self, key: str) -> None:
        self._lock.unlock(key)

    def locked(self, key: str, *, cancel: Optional[threading.Event] = None) -> AbstractContextManager[None]:
        return self._lock.locked(key, cancel=cancel)
