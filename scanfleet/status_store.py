#!/usr/bin/env python3
# -------------------------------------------------------------------------------
# Name:         status_store
# Purpose:      In-memory registry of active scan jobs and their aggregate
#               state, with one lock per job so jobs never contend.
#
# Licence:      MIT
# -------------------------------------------------------------------------------

"""
Status Store

Single point of truth for every active job's :class:`ScanState`::

    store = StatusStore()
    store.create("job-1", total_items=120)

    with store.locked("job-1") as state:
        state.register_node(node)

    snap = store.get("job-1")      # detached copy, raises NotFoundError

A coarse lock guards the job mapping; each job owns a re-entrant lock that
every mutation path holds while touching that job's state.  Snapshots are
deep copies taken under the job lock, so readers never observe a half-applied
update.

When a redis client is supplied, each mutation mirrors a summary of the job
(everything but the result list) into the ``scanfleet:jobs`` hash once the
job lock is released (best effort, write-only).
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from scanfleet.errors import NotFoundError, ValidationError
from scanfleet.models import ScanState

log = logging.getLogger("scanfleet.status_store")

REDIS_JOBS_KEY = "scanfleet:jobs"


@dataclass
class _JobEntry:
    state: ScanState
    lock: threading.RLock = field(default_factory=threading.RLock)
    # Mirror writes happen after the job lock is released; the version
    # keeps a slow writer from overwriting a newer summary.
    mirror_lock: threading.Lock = field(default_factory=threading.Lock)
    version: int = 0
    mirrored_version: int = 0
    removed: bool = False


class StatusStore:
    """Concurrent mapping from job ID to ScanState."""

    def __init__(self, redis_client: Any = None) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, _JobEntry] = {}
        self._redis = redis_client

    # -- Lifecycle ---------------------------------------------------------

    def create(self, job_id: str, total_items: int = 0) -> ScanState:
        """Register a zero-valued state for a new job."""
        entry = _JobEntry(state=ScanState(job_id=job_id,
                                          total_items=total_items))
        with self._lock:
            if job_id in self._jobs:
                raise ValidationError(f"Job '{job_id}' already registered")
            self._jobs[job_id] = entry
        with entry.lock:
            pending = self._mirror_payload(entry)
        self._persist(entry, pending)
        log.debug("Registered job %s (%d items)", job_id, total_items)
        return entry.state

    def remove(self, job_id: str) -> ScanState | None:
        """Drop a job. Returns the final state, or None if already absent."""
        with self._lock:
            entry = self._jobs.pop(job_id, None)
        if entry is None:
            return None
        # Wait out any in-flight mutation before handing the state back
        with entry.lock:
            final = entry.state.snapshot()
        self._unpersist(entry)
        return final

    # -- Access ------------------------------------------------------------

    def _entry(self, job_id: str) -> _JobEntry:
        with self._lock:
            entry = self._jobs.get(job_id)
        if entry is None:
            raise NotFoundError(job_id)
        return entry

    def get(self, job_id: str) -> ScanState:
        """Return a read-only snapshot of a job's state."""
        entry = self._entry(job_id)
        with entry.lock:
            return entry.state.snapshot()

    def exists(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    @contextmanager
    def locked(self, job_id: str) -> Iterator[ScanState]:
        """Yield the live state of a job with its lock held.

        Raises NotFoundError if the job is unknown or was removed while
        waiting for the lock.
        """
        entry = self._entry(job_id)
        with entry.lock:
            with self._lock:
                current = self._jobs.get(job_id)
            if current is not entry:
                raise NotFoundError(job_id)
            yield entry.state
            pending = self._mirror_payload(entry)
        self._persist(entry, pending)

    def job_ids(self) -> list[str]:
        with self._lock:
            return list(self._jobs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    # -- Mirror ------------------------------------------------------------

    def _mirror_payload(self, entry: _JobEntry) -> tuple[int, str] | None:
        """Serialize the job summary. Caller holds ``entry.lock``."""
        if self._redis is None:
            return None
        entry.version += 1
        return entry.version, json.dumps(entry.state.summary_dict())

    def _persist(self, entry: _JobEntry,
                 pending: tuple[int, str] | None) -> None:
        if pending is None:
            return
        version, payload = pending
        with entry.mirror_lock:
            if entry.removed or version <= entry.mirrored_version:
                return
            entry.mirrored_version = version
            try:
                self._redis.hset(REDIS_JOBS_KEY, entry.state.job_id, payload)
            except Exception as e:
                log.debug("Redis mirror write failed for %s: %s",
                          entry.state.job_id, e)

    def _unpersist(self, entry: _JobEntry) -> None:
        if self._redis is None:
            return
        job_id = entry.state.job_id
        with entry.mirror_lock:
            entry.removed = True
            try:
                self._redis.hdel(REDIS_JOBS_KEY, job_id)
            except Exception as e:
                log.debug("Redis mirror delete failed for %s: %s", job_id, e)
