from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import Callable, Iterator, Optional

from common.errors import (
    AlreadyExistsError,
    LockCancelledError,
    NotFoundError,
    PreconditionFailedError,
)

from .kv_store import LOCK_SUFFIX
from .models import LockConfig
from .primitive import PrimitiveStore


logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


def lock_key(key: str) -> str:
    return key + LOCK_SUFFIX


class DistributedLock:
    """
    Lease-based mutual exclusion using the object store as the only substrate.

    A lock on `key` is an empty marker object at `key + ".lock"`. It is taken
    with a create-if-absent write, so at most one caller can create it; no
    check performed beforehand ever grants the lock. A marker older than
    `lease_expiration` is stale and may be deleted by anyone, after which all
    waiters race on the conditional write again.

    - No FIFO fairness: any waiter may win a given retry.
    - After a holder crashes, the lock frees up within
      `lease_expiration + poll_interval`.
    - Cancellation is a `threading.Event`; waits are `Event.wait()` so setting
      it interrupts a waiting `lock()` within one poll interval.
    """

    def __init__(
        self,
        primitive: PrimitiveStore,
        config: Optional[LockConfig] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._primitive = primitive
        self._config = config or LockConfig()
        self._clock = clock

    @property
    def config(self) -> LockConfig:
        return self._config

    def _is_stale(self, modified: datetime) -> bool:
        age = self._clock() - modified
        return age > timedelta(seconds=self._config.lease_expiration)

    def _wait(self, cancel: threading.Event, key: str) -> None:
        if cancel.wait(self._config.poll_interval):
            logger.info("lock on %s cancelled while waiting", key)
            raise LockCancelledError(f"acquiring lock {lock_key(key)} was cancelled")

    def lock(self, key: str, *, cancel: Optional[threading.Event] = None) -> None:
        """
        Block until the lock on `key` is held.

        Raises:
        - LockCancelledError if `cancel` is set before the lock is obtained.
          The cancelled attempt leaves no marker behind.
        - Any other error from the store (permissions, transport, unsupported
          conditional writes). These abort the attempt and are never retried.
        """
        marker = lock_key(key)
        cancel = cancel or threading.Event()
        while True:
            if cancel.is_set():
                raise LockCancelledError(f"acquiring lock {marker} was cancelled")
            try:
                self._primitive.put(marker, b"", conditional=True)
            except AlreadyExistsError:
                pass
            else:
                logger.debug("acquired lock %s", marker)
                return

            try:
                info = self._primitive.head(marker)
            except NotFoundError:
                # Released between our write and the probe.
                continue

            if self._is_stale(info.modified):
                logger.info("reclaiming stale lock %s (last modified %s)", marker, info.modified.isoformat())
                # Delete only the marker judged stale: if another waiter already
                # replaced it, the ETag no longer matches and we just retry.
                try:
                    self._primitive.delete(marker, if_match=info.etag)
                except (NotFoundError, PreconditionFailedError):
                    pass
                continue

            self._wait(cancel, key)

    def unlock(self, key: str) -> None:
        """
        Release the lock on `key`. Releasing a lock that is not held is a no-op.

        Takes no cancellation signal: the delete is always attempted so a caller
        that gave up does not leave a marker blocking others until lease expiry.
        """
        marker = lock_key(key)
        try:
            self._primitive.delete(marker)
        except NotFoundError:
            return
        logger.debug("released lock %s", marker)

    @contextmanager
    def locked(self, key: str, *, cancel: Optional[threading.Event] = None) -> Iterator[None]:
        self.lock(key, cancel=cancel)
        try:
            yield
        finally:
            self.unlock(key)
