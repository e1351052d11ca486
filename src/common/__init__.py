"""
Common utilities for the encrypted object store.

Modules:
- errors: error taxonomy shared by the codec, the store and the lock
- crypto: AEAD codec binding each payload to its key name
"""

__all__ = [
    "crypto",
    "errors",
]
