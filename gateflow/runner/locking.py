"""
Lock management for gateflow.

Uses flock for per-plan locking. Every plan store write happens under the
plan's lock, so concurrent writers (threads or processes) never lose updates.
"""

import atexit
import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path


class LockTimeout(Exception):
    """Lock acquisition timed out."""
    pass


LOCK_POLL_INTERVAL = 0.05


def _is_locked(lock_file: Path) -> bool:
    if not lock_file.exists():
        return False

    with open(lock_file, 'r') as fd:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return True
        fcntl.flock(fd, fcntl.LOCK_UN)
    return False


def is_run_locked(state_dir: Path, plan_id: str) -> bool:
    """Check whether a run of the plan is in progress."""
    return _is_locked(state_dir / "locks" / "runs" / f"{plan_id}.lock")


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str):
    """
    Internal helper to acquire a file lock.

    Lock files are never deleted: removing them lets two holders lock
    different inodes under the same path.

    Args:
        lock_file: Path to the lock file
        timeout: Seconds to wait for lock
        lock_name: Human-readable name for error messages
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, 'w')
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start > timeout:
                fd.close()
                raise LockTimeout(f"Could not acquire {lock_name} within {timeout}s")
            time.sleep(LOCK_POLL_INTERVAL)

    def cleanup():
        if fd.closed:
            return
        fcntl.flock(fd, fcntl.LOCK_UN)
        fd.close()

    atexit.register(cleanup)

    try:
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        yield
    finally:
        atexit.unregister(cleanup)
        cleanup()


@contextmanager
def plan_lock(state_dir: Path, plan_id: str, timeout: float = 60):
    """
    Acquire per-plan lock, yield, release on exit.
    """
    lock_file = state_dir / "locks" / "plans" / f"{plan_id}.lock"
    with _acquire_lock(lock_file, timeout, f"lock for plan {plan_id}"):
        yield


@contextmanager
def run_lock(state_dir: Path, plan_id: str, timeout: float = 0):
    """
    Hold for the whole of a run: one run per plan at a time.
    """
    lock_file = state_dir / "locks" / "runs" / f"{plan_id}.lock"
    with _acquire_lock(lock_file, timeout, f"run lock for plan {plan_id}"):
        yield
