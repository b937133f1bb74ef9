"""Row mapping for persisted runs."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping

from ..contracts import Run

RUN_COLUMNS = (
    "id",
    "workflow_id",
    "user_id",
    "trigger_type",
    "status",
    "started_at",
    "completed_at",
    "duration",
    "output",
    "error",
    "error_step",
)


def run_to_row(run: Run) -> dict[str, Any]:
    """Flatten a run into column values; ``output`` becomes a JSON string."""
    data = run.model_dump(mode="json")
    return {
        "id": run.id,
        "workflow_id": run.workflow_id,
        "user_id": run.user_id,
        "trigger_type": run.trigger_type,
        "status": run.status,
        "started_at": run.started_at,
        "completed_at": run.completed_at,
        "duration": run.duration,
        "output": json.dumps(data["output"]),
        "error": run.error,
        "error_step": run.error_step,
    }


def _as_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def row_to_run(row: Mapping[str, Any]) -> Run:
    output = row["output"]
    if isinstance(output, (str, bytes)):
        output = json.loads(output)
    return Run(
        id=row["id"],
        workflow_id=row["workflow_id"],
        user_id=row["user_id"],
        trigger_type=row["trigger_type"],
        status=row["status"],
        started_at=_as_datetime(row["started_at"]),
        completed_at=_as_datetime(row["completed_at"]),
        duration=row["duration"],
        output=output,
        error=row["error"],
        error_step=row["error_step"],
    )
