"""In-memory broker for tests and single-process deployments."""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..config import RetentionPolicy
from ..contracts import Job, QueueStats
from .base import BaseBroker


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryBroker(BaseBroker):
    """Simple in-process job store.

    Jobs do not survive a restart. ``clock`` returns seconds and can be
    replaced in tests to control delays.
    """

    def __init__(
        self,
        remove_on_complete: Optional[RetentionPolicy] = None,
        remove_on_fail: Optional[RetentionPolicy] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(remove_on_complete, remove_on_fail)
        self._clock = clock
        self._seq = itertools.count()
        self._jobs: Dict[str, Job] = {}
        self._waiting: List[Tuple[int, int, str]] = []
        self._delayed: List[Tuple[float, int, str]] = []
        self._active: Set[str] = set()
        self._completed: "OrderedDict[str, float]" = OrderedDict()
        self._failed: "OrderedDict[str, float]" = OrderedDict()
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    def _push_waiting(self, job: Job) -> None:
        job.state = "waiting"
        heapq.heappush(self._waiting, (job.priority, next(self._seq), job.id))

    def _push_delayed(self, job: Job, delay: float) -> None:
        job.state = "delayed"
        heapq.heappush(self._delayed, (self._clock() + delay, next(self._seq), job.id))

    def _promote_due(self) -> None:
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, job_id = heapq.heappop(self._delayed)
            job = self._jobs.get(job_id)
            if job is not None and job.state == "delayed":
                self._push_waiting(job)

    def _trim(self, finished: "OrderedDict[str, float]", policy: RetentionPolicy) -> int:
        removed = 0
        cutoff = self._clock() - policy.age
        while finished:
            job_id, finished_at = next(iter(finished.items()))
            if finished_at >= cutoff and len(finished) <= policy.count:
                break
            finished.popitem(last=False)
            self._jobs.pop(job_id, None)
            removed += 1
        return removed

    def _store(self, job: Job) -> Job:
        stored = job.model_copy(deep=True)
        self._jobs[job.id] = stored
        return stored

    # ------------------------------------------------------------------
    async def add(self, job: Job, delay: float = 0) -> None:
        async with self._lock:
            stored = self._store(job)
            if delay and delay > 0:
                self._push_delayed(stored, delay)
            else:
                self._push_waiting(stored)
            job.state = stored.state

    async def fetch(self) -> Optional[Job]:
        async with self._lock:
            self._promote_due()
            while self._waiting:
                _, _, job_id = heapq.heappop(self._waiting)
                job = self._jobs.get(job_id)
                if job is None or job.state != "waiting":
                    continue
                job.state = "active"
                job.processed_at = _utcnow()
                self._active.add(job_id)
                return job.model_copy(deep=True)
            return None

    async def complete(self, job: Job, result: Optional[Dict[str, Any]] = None) -> None:
        async with self._lock:
            self._active.discard(job.id)
            job.state = "completed"
            job.finished_at = _utcnow()
            job.result = result
            self._store(job)
            self._completed[job.id] = self._clock()
            self._trim(self._completed, self.remove_on_complete)

    async def retry(self, job: Job, delay: float, error: str) -> None:
        async with self._lock:
            self._active.discard(job.id)
            job.attempt += 1
            job.failed_reason = error
            stored = self._store(job)
            self._push_delayed(stored, delay)
            job.state = stored.state

    async def requeue(self, job: Job) -> None:
        async with self._lock:
            self._active.discard(job.id)
            stored = self._store(job)
            self._push_waiting(stored)
            job.state = stored.state

    async def fail(self, job: Job, error: str) -> None:
        async with self._lock:
            self._active.discard(job.id)
            job.state = "failed"
            job.failed_reason = error
            job.finished_at = _utcnow()
            self._store(job)
            self._failed[job.id] = self._clock()
            self._trim(self._failed, self.remove_on_fail)

    async def get_job(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def counts(self) -> QueueStats:
        async with self._lock:
            states = [job.state for job in self._jobs.values()]
        return QueueStats(
            waiting=states.count("waiting"),
            active=states.count("active"),
            completed=states.count("completed"),
            failed=states.count("failed"),
            delayed=states.count("delayed"),
        )

    async def clean(self) -> int:
        async with self._lock:
            return self._trim(self._completed, self.remove_on_complete) + self._trim(
                self._failed, self.remove_on_fail
            )
