"""
test_locks.py - Unit tests for per-entity locking

Tests:
- Key helpers
- Sorted, deduplicated acquisition
- Timeout with partial release
- Independence of disjoint keys
"""

import threading

import pytest

from assetbridge import LockManager, LockTimeout
from assetbridge.locks import loan_key, user_key


class TestKeys:

    def test_key_format(self):
        assert user_key("alice") == "user:alice"
        assert loan_key("LN-0001") == "loan:LN-0001"


class TestHold:
    """Tests for LockManager.hold."""

    def test_held_inside_released_after(self):
        locks = LockManager()
        with locks.hold("user:alice", "loan:LN-1"):
            assert locks.is_held("user:alice")
            assert locks.is_held("loan:LN-1")
        assert not locks.is_held("user:alice")
        assert not locks.is_held("loan:LN-1")

    def test_duplicate_keys_do_not_self_deadlock(self):
        locks = LockManager(default_timeout=0.1)
        with locks.hold("user:alice", "user:alice"):
            assert locks.is_held("user:alice")

    def test_released_on_exception(self):
        locks = LockManager()
        with pytest.raises(RuntimeError):
            with locks.hold("user:alice"):
                raise RuntimeError("boom")
        assert not locks.is_held("user:alice")

    def test_timeout_releases_partial_acquisition(self):
        locks = LockManager(default_timeout=0.05)
        blocker_ready = threading.Event()
        release = threading.Event()

        def blocker():
            with locks.hold("user:bob"):
                blocker_ready.set()
                release.wait(2)

        t = threading.Thread(target=blocker)
        t.start()
        blocker_ready.wait(2)
        try:
            with pytest.raises(LockTimeout):
                with locks.hold("user:alice", "user:bob"):
                    pass
            assert not locks.is_held("user:alice")
        finally:
            release.set()
            t.join()

    def test_disjoint_keys_do_not_block(self):
        locks = LockManager(default_timeout=0.05)
        with locks.hold("user:alice"):
            done = []

            def other():
                with locks.hold("user:bob"):
                    done.append(True)

            t = threading.Thread(target=other)
            t.start()
            t.join(1)
            assert done == [True]

    def test_service_operation_times_out_on_contended_user(self, service):
        """A user-scoped operation cannot start while that user's lock is held elsewhere."""
        service.locks.default_timeout = 0.05
        with service.locks.hold(user_key("alice")):
            failures = []

            def declare():
                try:
                    service.declare_asset("alice", "FD", 1000)
                except LockTimeout as e:
                    failures.append(e)

            t = threading.Thread(target=declare)
            t.start()
            t.join(2)
        assert len(failures) == 1
        assert service.store.list_units("ASSET") == []
