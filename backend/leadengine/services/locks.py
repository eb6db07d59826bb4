"""Per-lead single-writer locks.

Operations on the same lead serialize; different leads run in parallel.
"""

import threading
from contextlib import contextmanager

import structlog

from leadengine.config import settings
from leadengine.errors import ConcurrencyConflict

logger = structlog.get_logger()


class RedisLeadLocks:
    """Distributed locks shared by API processes and RQ workers."""

    def __init__(self, r=None, timeout: int | None = None, wait: float | None = None):
        if r is None:
            from leadengine.services.throttle import get_redis
            r = get_redis()
        self.r = r
        self.timeout = timeout or settings.lock_timeout_seconds
        self.wait = wait or settings.lock_wait_seconds

    @contextmanager
    def hold(self, key: str):
        lock = self.r.lock(f"lead-lock:{key}", timeout=self.timeout, blocking_timeout=self.wait)
        if not lock.acquire():
            logger.warning("lead_lock_timeout", key=key)
            raise ConcurrencyConflict(f"Could not acquire lock for {key} within {self.wait}s")
        try:
            yield
        finally:
            try:
                lock.release()
            except Exception as e:
                # Lock expired under us; the version check still guards the write
                logger.warning("lead_lock_release_failed", key=key, error=str(e))


class LocalLeadLocks:
    """In-process locks for single-process deployments and tests."""

    def __init__(self, wait: float | None = None):
        self.wait = wait or settings.lock_wait_seconds
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    @contextmanager
    def hold(self, key: str):
        lock = self._lock_for(key)
        if not lock.acquire(timeout=self.wait):
            raise ConcurrencyConflict(f"Could not acquire lock for {key} within {self.wait}s")
        try:
            yield
        finally:
            lock.release()


def build_locks():
    if settings.lock_backend == "local":
        return LocalLeadLocks()
    return RedisLeadLocks()
