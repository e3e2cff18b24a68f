"""
RecordLockRegistry -- in-process serialisation of work on one record.

Corrections of the same original transaction must not interleave inside a
single process.  The registry hands out one ``threading.Lock`` per key and
forgets it once no holder or waiter remains.  Across processes the
database (``SELECT ... FOR UPDATE`` and the UNIQUE constraints on the
reversal/correction links) provides the same guarantee.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from voucher_kernel.logging_config import get_logger

logger = get_logger("services.locks")


class RecordLockRegistry:
    """Reference-counted per-key locks."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}

    @contextmanager
    def hold(self, key: object) -> Iterator[None]:
        """Block until ``key`` is free, then hold it for the ``with`` body."""
        name = str(key)
        with self._guard:
            lock = self._locks.setdefault(name, threading.Lock())
            self._users[name] = self._users.get(name, 0) + 1

        if not lock.acquire(blocking=False):
            logger.debug("record_lock_waiting", extra={"lock_key": name})
            lock.acquire()

        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._users[name] -= 1
                if self._users[name] == 0:
                    del self._users[name]
                    del self._locks[name]

    def is_held(self, key: object) -> bool:
        name = str(key)
        with self._guard:
            lock = self._locks.get(name)
            return lock is not None and lock.locked()


# Shared by every CorrectionService built without an explicit registry
default_registry = RecordLockRegistry()
