"""In-memory implementation of the run repository."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from ..contracts import Run
from .repository import RunRepository

logger = logging.getLogger(__name__)


class InMemoryRunRepository(RunRepository):
    """Store runs in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, Run] = {}

    # ------------------------------------------------------------------
    async def create_run(self, run: Run) -> None:
        self._runs[run.id] = run.model_copy(deep=True)

    async def complete_run(self, run: Run) -> None:
        stored = self._runs.get(run.id)
        if stored is None:
            logger.warning(f"Completing unknown run {run.id}")
            self._runs[run.id] = run.model_copy(deep=True)
            return
        if stored.is_terminal():
            logger.warning(f"Run {run.id} is already {stored.status}; ignoring update")
            return
        self._runs[run.id] = run.model_copy(deep=True)

    async def get_run(self, run_id: str) -> Run | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def list_runs(
        self,
        workflow_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Run]:
        runs = [
            r
            for r in self._runs.values()
            if (workflow_id is None or r.workflow_id == workflow_id)
            and (user_id is None or r.user_id == user_id)
        ]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        if limit is not None:
            runs = runs[:limit]
        return [r.model_copy(deep=True) for r in runs]
