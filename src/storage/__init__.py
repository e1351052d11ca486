"""
Encrypted key/value storage and a lease-based distributed lock over S3.

Records are sealed client-side with their key name bound as associated data;
locks are marker objects created with a conditional (create-if-absent) write.
"""

from .kv_store import KeyValueStore
from .lock import DistributedLock
from .models import KeyInfo, LockConfig, ObjectInfo, StorageConfig
from .primitive import PrimitiveStore, S3PrimitiveStore
from .s3_storage import S3Storage

__all__ = [
    "DistributedLock",
    "KeyInfo",
    "KeyValueStore",
    "LockConfig",
    "ObjectInfo",
    "PrimitiveStore",
    "S3PrimitiveStore",
    "S3Storage",
    "StorageConfig",
]
