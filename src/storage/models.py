from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


DEFAULT_LOCK_EXPIRATION = 60.0
DEFAULT_LOCK_POLL_INTERVAL = 1.0


def normalize_endpoint(endpoint: str) -> str:
    """Prefix a bare host with https:// so the SDK accepts it as endpoint_url."""
    endpoint = endpoint.strip()
    if endpoint and not endpoint.startswith(("http://", "https://")):
        endpoint = "https://" + endpoint
    return endpoint


class ObjectInfo(BaseModel):
    """Metadata returned by a HEAD on a stored object."""

    modified: datetime
    size: int = Field(..., ge=0, description="Stored (ciphertext) length in bytes")
    etag: Optional[str] = Field(default=None, description="Entity tag, when the store reports one")


class KeyInfo(BaseModel):
    """
    Read-only view of a stored record.

    `size` is the ciphertext length, not the plaintext length. Every stored
    object is a leaf, so `is_terminal` is always True.
    """

    key: str
    modified: datetime
    size: int
    is_terminal: bool = True


@dataclass(frozen=True)
class LockConfig:
    lease_expiration: float = DEFAULT_LOCK_EXPIRATION  # seconds before a marker is stale
    poll_interval: float = DEFAULT_LOCK_POLL_INTERVAL  # seconds between acquisition attempts

    def __post_init__(self) -> None:
        if self.lease_expiration <= 0:
            raise ValueError("lease_expiration must be > 0")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")


class StorageConfig(BaseModel):
    """
    Construction-time settings for `S3Storage`.

    Fields
    - bucket: bucket holding both records and lock markers.
    - region / endpoint: passed to the boto3 client; a bare endpoint host gets https://.
    - access_key_id / secret_access_key: static credentials; when omitted boto3's
      default credential chain applies.
    - key_file: path to key material (see `common.crypto.load_keyset`); when omitted
      values are stored in cleartext.
    - lock_expiration / lock_poll_interval: lease length and polling period, in seconds.
    """

    bucket: str
    region: Optional[str] = None
    endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    key_file: Optional[str] = None
    lock_expiration: float = Field(default=DEFAULT_LOCK_EXPIRATION, gt=0)
    lock_poll_interval: float = Field(default=DEFAULT_LOCK_POLL_INTERVAL, gt=0)

    @field_validator("bucket")
    @classmethod
    def _bucket_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("bucket must be defined")
        return v

    @field_validator("endpoint")
    @classmethod
    def _normalize_endpoint(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return normalize_endpoint(v) or None

    @model_validator(mode="after")
    def _credentials_paired(self) -> "StorageConfig":
        if bool(self.access_key_id) != bool(self.secret_access_key):
            raise ValueError("access_key_id and secret_access_key must be set together")
        return self

    def lock_config(self) -> LockConfig:
        return LockConfig(
            lease_expiration=self.lock_expiration,
            poll_interval=self.lock_poll_interval,
        )
