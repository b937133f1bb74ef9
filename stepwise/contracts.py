"""Core data contracts for the stepwise workflow system."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .constants import DEFAULT_JOB_PRIORITY

# Values flowing through step inputs, the variable context and run outputs.
DynamicValue = Union[
    None, bool, int, float, str, List["DynamicValue"], Dict[str, "DynamicValue"]
]

TriggerType = Literal[
    "manual", "cron", "webhook", "platform-event", "telegram", "discord"
]
RunStatus = Literal["running", "success", "error"]
JobState = Literal["waiting", "delayed", "active", "completed", "failed"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    """Accept both the stored camelCase keys and snake_case field names."""

    model_config = ConfigDict(populate_by_name=True)


class Step(_CamelModel):
    """One module call in a workflow."""

    id: str
    module: str
    inputs: Dict[str, Any] = Field(default_factory=dict)
    output_as: Optional[str] = Field(default=None, alias="outputAs")


class Workflow(_CamelModel):
    """An ordered list of steps plus output configuration."""

    id: str
    user_id: Optional[str] = Field(default=None, alias="userId")
    name: Optional[str] = None
    steps: List[Step] = Field(default_factory=list)
    return_value: Optional[str] = Field(default=None, alias="returnValue")
    output_display: Optional[Dict[str, Any]] = Field(
        default=None, alias="outputDisplay"
    )

    def effective_return_value(self) -> Optional[str]:
        """Return ``return_value``, falling back to the legacy display location."""
        if self.return_value:
            return self.return_value
        if self.output_display:
            legacy = self.output_display.get("returnValue")
            if isinstance(legacy, str) and legacy:
                return legacy
        return None


class Run(_CamelModel):
    """A single execution attempt of a workflow."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str = Field(alias="workflowId")
    user_id: str = Field(alias="userId")
    trigger_type: str = Field(default="manual", alias="triggerType")
    status: RunStatus = "running"
    started_at: datetime = Field(default_factory=_utcnow, alias="startedAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    duration: Optional[int] = Field(default=None, description="Milliseconds")
    output: Any = None
    error: Optional[str] = None
    error_step: Optional[str] = Field(default=None, alias="errorStep")

    @property
    def success(self) -> bool:
        return self.status == "success"

    def is_terminal(self) -> bool:
        return self.status != "running"


class Checkpoint(BaseModel):
    """Progress saved after the last successfully completed step."""

    step_index: int
    variables: Dict[str, Any] = Field(default_factory=dict)


class Job(_CamelModel):
    """A queued request to run a workflow."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    workflow_id: str = Field(alias="workflowId")
    user_id: str = Field(alias="userId")
    trigger_type: str = Field(default="manual", alias="triggerType")
    trigger_data: Dict[str, Any] = Field(default_factory=dict, alias="triggerData")
    attempt: int = 1
    priority: int = DEFAULT_JOB_PRIORITY
    state: JobState = "waiting"
    created_at: datetime = Field(default_factory=_utcnow)
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failed_reason: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    checkpoint: Optional[Checkpoint] = None

    def model_post_init(self, __context: Any) -> None:
        if not self.name:
            self.name = f"workflow-{self.workflow_id}"

    def to_json(self) -> str:
        """Serialize job to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes) -> "Job":
        """Deserialize job from JSON."""
        return cls.model_validate_json(data)


class EnqueueResult(BaseModel):
    """Outcome of ``ExecutionQueue.enqueue``."""

    job_id: str
    queued: bool
    run: Optional[Run] = None


class QueueStats(BaseModel):
    """Point-in-time job counts for monitoring."""

    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0

    @property
    def total(self) -> int:
        return self.waiting + self.active + self.delayed

    def as_dict(self) -> Dict[str, int]:
        return {**self.model_dump(), "total": self.total}
