"""Exception types raised by stepwise."""

from __future__ import annotations


class StepwiseError(Exception):
    """Base class for all stepwise errors."""


class ModuleNotRegistered(StepwiseError, KeyError):
    """Raised when a step references a module path the registry does not know."""

    def __init__(self, path: str) -> None:
        super().__init__(path)
        self.path = path

    def __str__(self) -> str:
        return f"Module not found in registry: {self.path}"


class StepFailed(StepwiseError):
    """A module invocation raised while executing a step."""

    def __init__(self, step_id: str, cause: BaseException) -> None:
        super().__init__(f"Step {step_id} failed: {cause}")
        self.step_id = step_id
        self.cause = cause


class RunCancelled(StepwiseError):
    """Raised when a run's cancellation token is set before a step starts."""


class WorkflowNotFound(StepwiseError, LookupError):
    """Raised when a workflow id cannot be resolved for a user."""

    def __init__(self, workflow_id: str, user_id: str | None = None) -> None:
        message = f"Workflow not found: {workflow_id}"
        if user_id is not None:
            message += f" (user {user_id})"
        super().__init__(message)
        self.workflow_id = workflow_id
        self.user_id = user_id


class BrokerUnavailable(StepwiseError):
    """The queue broker could not be reached."""


class QueueNotInitialized(StepwiseError, RuntimeError):
    """``enqueue`` was called on a broker-backed queue that was never started."""
