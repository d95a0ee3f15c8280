"""
locks.py - Per-entity mutual exclusion

Operations on the same user or the same loan are serialised; operations on
disjoint entities run in parallel. There is no global operation lock.

Keys are plain strings ("user:<id>", "loan:<id>"). Multi-key acquisition is
always done in sorted order, so two operations can never deadlock.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Dict, Iterator, List
import threading
import time

from .core import LockTimeout


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def loan_key(loan_id: str) -> str:
    return f"loan:{loan_id}"


class LockManager:
    """
    Lazily created threading.Lock per key.

    Example:
        locks = LockManager(default_timeout=5.0)
        with locks.hold(loan_key("LN-1"), user_key("alice")):
            ...
    """

    def __init__(self, default_timeout: float = 5.0):
        self.default_timeout = default_timeout
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: str, timeout: float = None) -> Iterator[None]:
        """
        Acquire every key (deduplicated, sorted) under a single deadline.

        Raises:
            LockTimeout: If any key cannot be acquired before the deadline.
                         Keys acquired so far are released first.
        """
        wait = self.default_timeout if timeout is None else timeout
        deadline = time.monotonic() + wait
        acquired: List[threading.Lock] = []
        try:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                remaining = max(0.0, deadline - time.monotonic())
                if not lock.acquire(timeout=remaining):
                    raise LockTimeout(f"Timed out after {wait}s waiting for {key}")
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def is_held(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()
