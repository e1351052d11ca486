from __future__ import annotations

import logging
from typing import List

from pydantic import ValidationError

from common.crypto import Codec
from common.errors import NotFoundError, StorageError

from .models import KeyInfo
from .primitive import PrimitiveStore


logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"


def _associated_data(key: str) -> bytes:
    return key.encode("utf-8")


def _require_key(key: str) -> None:
    if not isinstance(key, str) or not key:
        raise ValueError("key must be a non-empty string")


class KeyValueStore:
    """
    Encrypted records on top of a `PrimitiveStore`.

    Every value is sealed with the codec using its key name as associated data,
    so ciphertext copied to a different key fails to load. The store takes no
    locks of its own; hold a `DistributedLock` around sequences that must be
    atomic.
    """

    def __init__(self, primitive: PrimitiveStore, codec: Codec) -> None:
        self._primitive = primitive
        self._codec = codec

    def store(self, key: str, value: bytes) -> None:
        """Encrypt and write `value` at `key`, overwriting any previous record."""
        _require_key(key)
        if key.endswith(LOCK_SUFFIX):
            raise ValueError(f"keys ending in {LOCK_SUFFIX!r} are reserved for lock markers")
        ciphertext = self._codec.encrypt(bytes(value), _associated_data(key))
        self._primitive.put(key, ciphertext)
        logger.debug("stored %s (%d bytes)", key, len(ciphertext))

    def load(self, key: str) -> bytes:
        """Read and decrypt the record at `key`.

        Raises:
        - NotFoundError if the object is absent.
        - AuthenticationError if the ciphertext was tampered with or belongs to another key.
        """
        _require_key(key)
        ciphertext = self._primitive.get(key)
        return self._codec.decrypt(ciphertext, _associated_data(key))

    def delete(self, key: str) -> None:
        _require_key(key)
        try:
            self._primitive.delete(key)
        except NotFoundError:
            logger.debug("delete of missing key %s ignored", key)

    def exists(self, key: str) -> bool:
        # Lenient by contract: any failure reads as "absent". Use stat() to see errors.
        try:
            self._primitive.head(key)
        except (StorageError, ValidationError):
            return False
        return True

    def stat(self, key: str) -> KeyInfo:
        _require_key(key)
        info = self._primitive.head(key)
        return KeyInfo(key=key, modified=info.modified, size=info.size, is_terminal=True)

    def list(self, prefix: str, recursive: bool = False) -> List[str]:
        """
        List keys under `prefix`.

        A non-empty prefix is treated as a directory: "certs/example.com" lists
        "certs/example.com/...". Without `recursive` only direct children are
        returned; with it, every key at any depth.
        """
        if prefix and not prefix.endswith("/"):
            prefix += "/"
        delimiter = None if recursive else "/"
        return list(self._primitive.list(prefix, delimiter=delimiter))
