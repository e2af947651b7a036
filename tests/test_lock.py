"""
Tests for the run lock.
"""

import json
import os

import pytest

from composesync.errors import LockError
from composesync.lock import RunLock


def test_acquire_records_holder(tmp_path):
    lock = RunLock(tmp_path / "composesync.lock")

    lock.acquire()
    try:
        assert lock.held
        metadata = json.loads((tmp_path / "composesync.lock").read_text())
        assert metadata["pid"] == os.getpid()
        assert "started_at" in metadata
    finally:
        lock.release()

    assert not lock.held


def test_second_holder_is_refused(tmp_path):
    path = tmp_path / "composesync.lock"

    with RunLock(path):
        with pytest.raises(LockError, match=f"pid {os.getpid()}"):
            RunLock(path).acquire()


def test_lock_is_reusable_after_release(tmp_path):
    path = tmp_path / "composesync.lock"

    with RunLock(path):
        pass

    with RunLock(path) as lock:
        assert lock.held


def test_released_on_exception(tmp_path):
    path = tmp_path / "composesync.lock"

    with pytest.raises(RuntimeError):
        with RunLock(path):
            raise RuntimeError("run crashed")

    with RunLock(path) as lock:
        assert lock.held


def test_creates_parent_directory(tmp_path):
    path = tmp_path / "missing" / "composesync.lock"

    with RunLock(path):
        assert path.exists()


def test_release_without_acquire_is_noop(tmp_path):
    lock = RunLock(tmp_path / "composesync.lock")

    lock.release()

    assert not lock.held
