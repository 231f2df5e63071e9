"""Per-key mutual exclusion for tasks, user balances, and counters."""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


def task_key(task_id: str) -> str:
    return f"task:{task_id}"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def counter_key(name: str) -> str:
    return f"counter:{name}"


def _lock_order(key: str) -> tuple:
    # Task locks always come before any other kind.
    return (not key.startswith("task:"), key)


class _Entry:
    """A lock plus the number of holders and waiters using it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class KeyedLocks:
    """A registry of re-entrant locks created on first use.

    An entry is dropped once nobody holds or waits for it, so the registry
    only grows with the number of keys in use at the same time.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _Entry()
            entry.users += 1
            return entry.lock

    def _checkin(self, key: str, release: bool) -> None:
        with self._guard:
            entry = self._locks[key]
            if release:
                entry.lock.release()
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    def acquire(self, *keys: str) -> List[str]:
        """Acquire the lock of every key and return the keys in acquisition order."""
        acquired = []
        try:
            for key in sorted(set(keys), key=_lock_order):
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key, release=False)
                    raise
                acquired.append(key)
        except BaseException:
            self.release(acquired)
            raise
        return acquired

    def release(self, keys: List[str]) -> None:
        for key in reversed(keys):
            self._checkin(key, release=True)

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        acquired = self.acquire(*keys)
        try:
            yield
        finally:
            self.release(acquired)
