"""Run a stored workflow end to end: context, execution, extraction, persistence."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional

from .context import VariableContext
from .contracts import Checkpoint, Run, Workflow
from .execute import StepExecutor
from .extraction import extract_output
from .persistence import InMemoryRunRepository, RunRepository
from .registry import ModuleRegistry
from .workflows import WorkflowStore

logger = logging.getLogger(__name__)

CheckpointCallback = Callable[[Checkpoint], Awaitable[None]]


class WorkflowRunner:
    """Executes workflows by id and records one terminal Run per execution."""

    def __init__(
        self,
        registry: ModuleRegistry,
        workflows: WorkflowStore,
        repository: RunRepository | None = None,
        executor: StepExecutor | None = None,
    ) -> None:
        self.registry = registry
        self.workflows = workflows
        self.repository = repository or InMemoryRunRepository()
        self.executor = executor or StepExecutor(registry)

    async def run(
        self,
        workflow_id: str,
        user_id: str,
        trigger_type: str = "manual",
        trigger_data: Optional[Mapping[str, Any]] = None,
        *,
        checkpoint: Optional[Checkpoint] = None,
        on_checkpoint: Optional[CheckpointCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Run:
        """Look up ``workflow_id`` for ``user_id`` and execute it.

        Raises:
            WorkflowNotFound: If the workflow does not exist for the user.
        """
        workflow = await self.workflows.get_workflow(workflow_id, user_id)
        return await self.run_workflow(
            workflow,
            user_id,
            trigger_type,
            trigger_data,
            checkpoint=checkpoint,
            on_checkpoint=on_checkpoint,
            cancel=cancel,
        )

    async def run_workflow(
        self,
        workflow: Workflow,
        user_id: str,
        trigger_type: str = "manual",
        trigger_data: Optional[Mapping[str, Any]] = None,
        *,
        checkpoint: Optional[Checkpoint] = None,
        on_checkpoint: Optional[CheckpointCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Run:
        """Execute an already loaded workflow definition."""
        run = Run(workflow_id=workflow.id, user_id=user_id, trigger_type=trigger_type)
        await self.repository.create_run(run)
        logger.info(
            f"Run {run.id} started for workflow {workflow.id} "
            f"(user={user_id}, trigger={trigger_type})"
        )

        if checkpoint is not None:
            context = VariableContext(checkpoint.variables)
            start_index = checkpoint.step_index + 1
            logger.info(f"Run {run.id} resuming after step index {checkpoint.step_index}")
        else:
            context = VariableContext.for_trigger(user_id, trigger_type, trigger_data)
            start_index = 0

        step_callback = None
        if on_checkpoint is not None:

            async def step_callback(index: int, ctx: VariableContext) -> None:
                await on_checkpoint(Checkpoint(step_index=index, variables=ctx.snapshot()))

        started = time.perf_counter()
        try:
            result = await self.executor.execute(
                workflow,
                context,
                start_index=start_index,
                cancel=cancel,
                on_step_complete=step_callback,
            )
        except asyncio.CancelledError:
            run.duration = int((time.perf_counter() - started) * 1000)
            run.completed_at = datetime.now(timezone.utc)
            run.status = "error"
            run.error = "Run cancelled"
            logger.warning(f"Run {run.id} cancelled after {run.duration}ms")
            await asyncio.shield(self.repository.complete_run(run))
            raise
        run.duration = int((time.perf_counter() - started) * 1000)
        run.completed_at = datetime.now(timezone.utc)

        if result.status == "success":
            run.status = "success"
            run.output = extract_output(result.output, workflow.effective_return_value())
            logger.info(f"Run {run.id} succeeded in {run.duration}ms")
        else:
            run.status = "error"
            run.error = result.error
            run.error_step = result.error_step
            logger.info(f"Run {run.id} failed at step {run.error_step}: {run.error}")

        await self.repository.complete_run(run)
        return run
