"""Step execution engine for stepwise workflows."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Literal, Optional

from pydantic import BaseModel

from .context import VariableContext
from .contracts import Step, Workflow
from .errors import RunCancelled, StepFailed
from .registry import ModuleRegistry
from .templates import resolve_inputs

logger = logging.getLogger(__name__)

StepCallback = Callable[[int, VariableContext], Awaitable[None]]


class ExecutionResult(BaseModel):
    """Terminal outcome of executing a workflow's steps."""

    status: Literal["success", "error"]
    output: Any = None
    error: Optional[str] = None
    error_step: Optional[str] = None
    completed_steps: int = 0


def describe_error(exc: BaseException) -> str:
    """Human readable message for ``exc``."""
    message = str(exc)
    return message if message else type(exc).__name__


class StepExecutor:
    """Runs a workflow's steps in declaration order against a variable context."""

    def __init__(self, registry: ModuleRegistry) -> None:
        self._registry = registry

    async def execute(
        self,
        workflow: Workflow,
        context: VariableContext,
        start_index: int = 0,
        cancel: Optional[asyncio.Event] = None,
        on_step_complete: Optional[StepCallback] = None,
    ) -> ExecutionResult:
        """Execute ``workflow`` from ``start_index`` onwards.

        The first failing step aborts the run; later steps never execute and
        no partial output is returned.
        """
        steps = workflow.steps
        if not steps:
            return ExecutionResult(status="success", output={})

        for index in range(start_index, len(steps)):
            step = steps[index]
            try:
                if cancel is not None and cancel.is_set():
                    raise RunCancelled("Run cancelled")
                await self.run_step(step, context)
            except RunCancelled as exc:
                logger.info(f"Workflow {workflow.id} cancelled before step {step.id}")
                return ExecutionResult(
                    status="error",
                    error=describe_error(exc),
                    error_step=step.id,
                    completed_steps=index,
                )
            except StepFailed as exc:
                logger.warning(
                    f"Workflow {workflow.id} failed at step {exc.step_id} "
                    f"({step.module}): {describe_error(exc.cause)}"
                )
                return ExecutionResult(
                    status="error",
                    error=describe_error(exc.cause),
                    error_step=exc.step_id,
                    completed_steps=index,
                )

            if on_step_complete is not None:
                await on_step_complete(index, context)

        return ExecutionResult(
            status="success", output=context.as_dict(), completed_steps=len(steps)
        )

    async def run_step(self, step: Step, context: VariableContext) -> Any:
        """Resolve inputs, invoke the module and bind its output."""
        inputs = resolve_inputs(step.inputs, context)
        logger.debug(f"Running step {step.id} -> {step.module}")
        try:
            result = await self._registry.invoke(step.module, inputs)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise StepFailed(step.id, exc) from exc

        if step.output_as:
            context.set(step.output_as, result)
        return result
