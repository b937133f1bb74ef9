"""Base broker interface for the execution queue."""

from __future__ import annotations

import abc
from typing import Any, Dict, Optional

from ..config import RetentionPolicy
from ..constants import COMPLETED_RETENTION, FAILED_RETENTION
from ..contracts import Job, QueueStats


class BaseBroker(metaclass=abc.ABCMeta):
    """Abstract job store backing the execution queue.

    A broker owns job state. Every transition below is atomic with respect
    to other workers: ``waiting``/``delayed`` -> ``active`` via
    :meth:`fetch`, and ``active`` -> ``completed``/``delayed``/``failed``
    via :meth:`complete`, :meth:`retry` and :meth:`fail`. A job interrupted
    by shutdown goes ``active`` -> ``waiting`` via :meth:`requeue`.
    """

    def __init__(
        self,
        remove_on_complete: Optional[RetentionPolicy] = None,
        remove_on_fail: Optional[RetentionPolicy] = None,
    ) -> None:
        self.remove_on_complete = remove_on_complete or RetentionPolicy(
            age=COMPLETED_RETENTION[0], count=COMPLETED_RETENTION[1]
        )
        self.remove_on_fail = remove_on_fail or RetentionPolicy(
            age=FAILED_RETENTION[0], count=FAILED_RETENTION[1]
        )

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def add(self, job: Job, delay: float = 0) -> None:
        """Store a new job as waiting, or delayed when ``delay`` > 0 seconds."""
        raise NotImplementedError

    @abc.abstractmethod
    async def fetch(self) -> Optional[Job]:
        """Promote due delayed jobs and claim the highest-priority waiting one."""
        raise NotImplementedError

    @abc.abstractmethod
    async def complete(self, job: Job, result: Optional[Dict[str, Any]] = None) -> None:
        """Mark an active job completed."""
        raise NotImplementedError

    @abc.abstractmethod
    async def retry(self, job: Job, delay: float, error: str) -> None:
        """Move an active job back to delayed for its next attempt."""
        raise NotImplementedError

    @abc.abstractmethod
    async def requeue(self, job: Job) -> None:
        """Return an interrupted active job to waiting without using an attempt."""
        raise NotImplementedError

    @abc.abstractmethod
    async def fail(self, job: Job, error: str) -> None:
        """Mark an active job terminally failed."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_job(self, job_id: str) -> Optional[Job]:
        """Return the job if it is still retained."""
        raise NotImplementedError

    @abc.abstractmethod
    async def counts(self) -> QueueStats:
        """Return the number of jobs in each state."""
        raise NotImplementedError

    @abc.abstractmethod
    async def clean(self) -> int:
        """Apply retention policies; return the number of jobs removed."""
        raise NotImplementedError
