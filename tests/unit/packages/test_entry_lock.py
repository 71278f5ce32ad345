"""Unit tests for the per-entry exclusive lock."""

import os
import threading
import time

import pytest

from spvforge.errors import LockTimeout
from spvforge.packages.entry_lock import EntryLock


class TestEntryLock:
    """Test cases for EntryLock."""

    def test_acquire_and_release(self, tmp_path):
        lock = EntryLock(tmp_path / "entry" / "lock", timeout=1)
        lock.acquire()
        assert lock.is_held
        assert (tmp_path / "entry" / "lock").read_text(encoding="utf-8") == str(os.getpid())
        lock.release()
        assert not lock.is_held

    def test_release_without_acquire_is_noop(self, tmp_path):
        EntryLock(tmp_path / "lock").release()

    def test_context_manager_releases_on_error(self, tmp_path):
        lock_path = tmp_path / "lock"
        with pytest.raises(RuntimeError):
            with EntryLock(lock_path, timeout=1):
                raise RuntimeError("boom")

        with EntryLock(lock_path, timeout=0.1) as lock:
            assert lock.is_held

    def test_contended_lock_times_out(self, tmp_path):
        lock_path = tmp_path / "lock"
        with EntryLock(lock_path, timeout=1):
            waiter = EntryLock(lock_path, timeout=0.3, poll_interval=0.05)
            start = time.monotonic()
            with pytest.raises(LockTimeout, match="held by running process"):
                waiter.acquire()
            assert time.monotonic() - start >= 0.3
            assert not waiter.is_held

    def test_waiter_acquires_after_release(self, tmp_path):
        lock_path = tmp_path / "lock"
        holder = EntryLock(lock_path, timeout=1)
        holder.acquire()
        acquired = threading.Event()

        def wait_for_lock():
            with EntryLock(lock_path, timeout=5, poll_interval=0.02):
                acquired.set()

        thread = threading.Thread(target=wait_for_lock)
        thread.start()
        time.sleep(0.2)
        assert not acquired.is_set()

        holder.release()
        thread.join(timeout=5)
        assert acquired.is_set()

    def test_mutual_exclusion(self, tmp_path):
        lock_path = tmp_path / "lock"
        active = []
        overlaps = []

        def critical_section():
            with EntryLock(lock_path, timeout=10, poll_interval=0.01):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(len(active))
                time.sleep(0.02)
                active.pop()

        threads = [threading.Thread(target=critical_section) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert overlaps == []
