from __future__ import annotations


class StorageError(RuntimeError):
    """Base error for the encrypted object store."""


class NotFoundError(StorageError):
    """The object does not exist."""


class AlreadyExistsError(StorageError):
    """A conditional create found the object already present."""


class AuthenticationError(StorageError):
    """Ciphertext failed integrity checks or was bound to a different key name."""


class EncryptionError(StorageError):
    """The payload could not be encrypted."""


class TransientError(StorageError):
    """Network or service failure reported by the object store."""


class LockCancelledError(StorageError):
    """The caller cancelled a lock acquisition while it was waiting."""


class ConditionalWriteUnsupportedError(StorageError):
    """The object store rejected a create-if-absent write."""


class PreconditionFailedError(StorageError):
    """A conditional write or delete found the object changed since it was read."""
