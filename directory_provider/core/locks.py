"""Named mutexes serializing mutations of the same parent object.

Two operations touching a sub-collection of one parent (credentials, owners,
role enablement) must not interleave. Locks are per process; entries are
created on first use and live as long as the registry.
"""
from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)

LockKey = Tuple[str, str]


class NameLocks:
    """Registry of re-entrant locks keyed by (resource type, name)."""

    def __init__(self):
        self._registry_lock = threading.Lock()
        self._locks: Dict[LockKey, threading.RLock] = {}

    def _lock_for(self, key: LockKey) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def acquire(self, resource_type: str, name: str) -> Iterator[LockKey]:
        """Hold the lock for ``(resource_type, name)`` for the enclosed block.

        Re-entrant for the same thread. Released on every exit path.
        """
        key = (resource_type, name)
        lock = self._lock_for(key)
        logger.debug("[locks] Waiting for %s/%s", resource_type, name)
        lock.acquire()
        try:
            logger.debug("[locks] Acquired %s/%s", resource_type, name)
            yield key
        finally:
            lock.release()
            logger.debug("[locks] Released %s/%s", resource_type, name)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)

    def __contains__(self, key: LockKey) -> bool:
        with self._registry_lock:
            return key in self._locks


_default: Optional[NameLocks] = None
_default_guard = threading.Lock()


def default_locks() -> NameLocks:
    """Process-wide registry shared by engines that were not given one."""
    global _default
    with _default_guard:
        if _default is None:
            _default = NameLocks()
        return _default
