"""Repository abstraction for run persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from ..contracts import Run


class RunRepository(Protocol):
    """Protocol for run persistence backends."""

    async def create_run(self, run: Run) -> None:
        """Persist a newly started run (status ``running``)."""

    async def complete_run(self, run: Run) -> None:
        """Persist the single terminal update of a run."""

    async def get_run(self, run_id: str) -> Run | None:
        """Retrieve a run by id."""

    async def list_runs(
        self,
        workflow_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Run]:
        """Return runs, newest first."""
