from __future__ import annotations

import time
from pathlib import Path

import pytest

from constitution_os.contracts.errors import LockTimeoutError
from constitution_os.state.lock import ExclusiveFileLock
from constitution_os.state.manager import StateManager


def test_lock_is_exclusive_between_handles(tmp_path: Path):
    path = tmp_path / "state" / ".lock"
    with ExclusiveFileLock(path) as held:
        assert held.held
        contender = ExclusiveFileLock(path, retries=3, wait_ms=1)
        with pytest.raises(LockTimeoutError):
            contender.acquire()
        assert not contender.held

    # released: a new handle gets it straight away
    again = ExclusiveFileLock(path, retries=1, wait_ms=0)
    again.acquire()
    again.release()


def test_lock_released_when_block_raises(tmp_path: Path):
    path = tmp_path / ".lock"
    with pytest.raises(RuntimeError):
        with ExclusiveFileLock(path):
            raise RuntimeError("boom")
    with ExclusiveFileLock(path, retries=1):
        pass


def test_timeout_respects_retry_budget(tmp_path: Path):
    path = tmp_path / ".lock"
    with ExclusiveFileLock(path):
        started = time.monotonic()
        with pytest.raises(LockTimeoutError):
            ExclusiveFileLock(path, retries=5, wait_ms=20).acquire()
        elapsed = time.monotonic() - started
    assert 0.05 <= elapsed < 2.0


def test_not_reentrant(tmp_path: Path):
    lock = ExclusiveFileLock(tmp_path / ".lock")
    with lock:
        with pytest.raises(RuntimeError):
            lock.acquire()


def test_manager_operations_time_out_while_locked(state_dir: Path, make_event, make_decision):
    mgr = StateManager(state_dir, lock_retries=2, lock_wait_ms=1)
    mgr.load_state()
    registry = (state_dir / "agent_registry.json").read_bytes()

    with ExclusiveFileLock(state_dir / ".lock"):
        with pytest.raises(LockTimeoutError):
            mgr.get_agent("agent:alpha")
        with pytest.raises(LockTimeoutError):
            mgr.apply_decision(make_event(), make_decision(delta=-0.5))

    assert (state_dir / "agent_registry.json").read_bytes() == registry
    assert mgr.get_agent("agent:alpha") is None
