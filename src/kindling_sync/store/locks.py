"""Per-project write locks with acquisition tracking."""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from kindling_sync.errors import StoreError

logger = logging.getLogger(__name__)


@dataclass
class LockStats:
    """Statistics for one project's lock."""

    acquisitions: int = 0
    contentions: int = 0  # times another thread already held it
    max_wait_time: float = 0.0


class ProjectLockRegistry:
    """One reentrant lock per project id, created on first use.

    Writers to different projects never block each other. Multi-call writers
    (``MergeApplier.apply`` and ``reclassify_references``) take the lock
    around their whole batch; single store methods do not take it. The lock
    is reentrant, so a holder may call another locked writer on the same
    project.
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._holders: dict[str, int | None] = {}
        self._stats: dict[str, LockStats] = defaultdict(LockStats)
        self._meta_lock = threading.Lock()

    def _lock_for(self, project_id: str) -> threading.RLock:
        with self._meta_lock:
            lock = self._locks.get(project_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[project_id] = lock
            return lock

    @contextmanager
    def acquire(
        self, project_id: str, timeout: float | None = None
    ) -> Iterator[None]:
        """Hold the write lock for *project_id*.

        Raises:
            StoreError: If *timeout* expires before the lock is free.
        """
        lock = self._lock_for(project_id)
        thread_id = threading.get_ident()

        with self._meta_lock:
            holder = self._holders.get(project_id)
            if holder is not None and holder != thread_id:
                self._stats[project_id].contentions += 1
                logger.debug("Waiting for write lock on project %s", project_id)

        start = time.monotonic()
        if timeout is not None:
            if not lock.acquire(timeout=timeout):
                raise StoreError(
                    f"Timed out after {timeout}s waiting for project {project_id}"
                )
        else:
            lock.acquire()
        waited = time.monotonic() - start

        with self._meta_lock:
            stats = self._stats[project_id]
            stats.acquisitions += 1
            stats.max_wait_time = max(stats.max_wait_time, waited)
            previous_holder = self._holders.get(project_id)
            self._holders[project_id] = thread_id

        try:
            yield
        finally:
            with self._meta_lock:
                self._holders[project_id] = previous_holder
            lock.release()

    def is_held(self, project_id: str) -> bool:
        with self._meta_lock:
            return self._holders.get(project_id) is not None

    def get_stats(self, project_id: str) -> LockStats:
        with self._meta_lock:
            stats = self._stats[project_id]
            return LockStats(
                acquisitions=stats.acquisitions,
                contentions=stats.contentions,
                max_wait_time=stats.max_wait_time,
            )
