from __future__ import annotations

import base64
import binascii
import hashlib
import os
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import AuthenticationError, EncryptionError


_VERSION = b"\x01"
_KEY_ID_LEN = 4
_NONCE_LEN = 12
_TAG_LEN = 16
_HEADER_LEN = len(_VERSION) + _KEY_ID_LEN + _NONCE_LEN


class Codec(Protocol):
    def encrypt(self, plaintext: bytes, associated_data: bytes) -> bytes: ...

    def decrypt(self, ciphertext: bytes, associated_data: bytes) -> bytes: ...


class CleartextCodec:
    """Identity codec used when no key material is configured."""

    def encrypt(self, plaintext: bytes, associated_data: bytes) -> bytes:
        return bytes(plaintext)

    def decrypt(self, ciphertext: bytes, associated_data: bytes) -> bytes:
        return bytes(ciphertext)


def _decode_key(key: str | bytes) -> bytes:
    """Decode a urlsafe base64 key (the format `Fernet.generate_key()` emits)."""
    if isinstance(key, str):
        key = key.strip().encode("ascii")
    try:
        raw = base64.urlsafe_b64decode(key)
    except (binascii.Error, ValueError) as ex:
        raise ValueError("Encryption key is not valid urlsafe base64") from ex
    if len(raw) not in (16, 24, 32):
        raise ValueError(f"Encryption key must decode to 16, 24 or 32 bytes, got {len(raw)}")
    return raw


def _key_id(raw: bytes) -> bytes:
    return hashlib.sha256(raw).digest()[:_KEY_ID_LEN]


def generate_key() -> str:
    """Return a fresh 256-bit key as urlsafe base64 text."""
    return base64.urlsafe_b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")


class AESGCMCodec:
    """
    AES-GCM codec over an ordered keyset.

    - The first key is primary and encrypts; every key in the set can decrypt,
      so old ciphertexts stay readable after a key rotation.
    - Wire format: version(1) || key_id(4) || nonce(12) || ciphertext || tag(16).
    - Associated data is authenticated but not stored; decrypting with any other
      associated data raises `AuthenticationError`.
    """

    def __init__(self, keys: Sequence[str | bytes]) -> None:
        if not keys:
            raise ValueError("AESGCMCodec requires at least one key")
        self._ciphers: Dict[bytes, AESGCM] = {}
        self._primary_id = b""
        for i, key in enumerate(keys):
            raw = _decode_key(key)
            kid = _key_id(raw)
            if i == 0:
                self._primary_id = kid
            self._ciphers.setdefault(kid, AESGCM(raw))

    def encrypt(self, plaintext: bytes, associated_data: bytes) -> bytes:
        nonce = os.urandom(_NONCE_LEN)
        try:
            sealed = self._ciphers[self._primary_id].encrypt(nonce, plaintext, associated_data)
        except Exception as ex:
            raise EncryptionError("Failed to encrypt payload") from ex
        return _VERSION + self._primary_id + nonce + sealed

    def decrypt(self, ciphertext: bytes, associated_data: bytes) -> bytes:
        if len(ciphertext) < _HEADER_LEN + _TAG_LEN:
            raise AuthenticationError("Ciphertext is truncated")
        if ciphertext[:1] != _VERSION:
            raise AuthenticationError("Unknown ciphertext version")
        kid = ciphertext[1 : 1 + _KEY_ID_LEN]
        cipher = self._ciphers.get(kid)
        if cipher is None:
            raise AuthenticationError("Ciphertext was sealed with an unknown key")
        nonce = ciphertext[1 + _KEY_ID_LEN : _HEADER_LEN]
        try:
            return cipher.decrypt(nonce, ciphertext[_HEADER_LEN:], associated_data)
        except InvalidTag as ex:
            raise AuthenticationError("Ciphertext failed authentication") from ex


def load_keyset(path: os.PathLike[str] | str) -> List[str]:
    """Read key material: one base64 key per line, first is primary, `#` starts a comment."""
    keys: List[str] = []
    with Path(path).open("r", encoding="utf-8") as f:
        for line in f:
            line = line.split("#", 1)[0].strip()
            if line:
                _decode_key(line)
                keys.append(line)
    if not keys:
        raise ValueError(f"No encryption keys found in {path}")
    return keys


def codec_from_key_file(path: Optional[os.PathLike[str] | str]) -> Codec:
    if not path:
        return CleartextCodec()
    return AESGCMCodec(load_keyset(path))
