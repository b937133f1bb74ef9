"""Workflow execution queue.

Decouples "a run was requested" from "a run executes now". Requests become
jobs in a broker and a bounded pool of workers executes them with retry,
exponential backoff and a global rate limit. Without a broker, or when the
broker cannot be reached at startup, ``enqueue`` executes the workflow
directly on the caller's task instead.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

from .brokers import BaseBroker, get_broker
from .config import QueueConfig, StepwiseConfig, load_config
from .constants import DIRECT_EXECUTION_JOB_ID
from .contracts import Checkpoint, EnqueueResult, Job, QueueStats, Run
from .errors import QueueNotInitialized
from .execute import describe_error
from .runner import WorkflowRunner
from .utils.ratelimit import SlidingWindowRateLimiter
from .utils.retry import compute_backoff

logger = logging.getLogger(__name__)


class ExecutionQueue:
    """Concurrency-limited job queue in front of a :class:`WorkflowRunner`.

    Lifecycle: construct, ``await start()`` once on startup, ``await
    shutdown()`` to drain. The worker pool size is a global cap across all
    users; per-user fairness is not handled here.
    """

    def __init__(
        self,
        runner: WorkflowRunner,
        broker: Optional[BaseBroker] = None,
        settings: Optional[QueueConfig] = None,
        limiter: Optional[SlidingWindowRateLimiter] = None,
    ) -> None:
        self.runner = runner
        self.settings = settings or QueueConfig()
        self._broker = broker
        self._limiter = limiter or SlidingWindowRateLimiter(
            self.settings.max_jobs_per_minute, self.settings.rate_limit_window
        )
        self._initialized = False
        self._available = False
        self._stopping = asyncio.Event()
        self._workers: List[asyncio.Task] = []
        self._active: Dict[str, Job] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}
        self._cancelled: set[str] = set()
        self.peak_active = 0

    @classmethod
    def from_config(
        cls, runner: WorkflowRunner, config: Optional[StepwiseConfig] = None
    ) -> "ExecutionQueue":
        """Build a queue using the broker and queue settings from ``config``."""
        config = config or load_config()
        return cls(runner, broker=get_broker(config=config), settings=config.queue)

    # ------------------------------------------------------------------
    # Lifecycle
    async def start(self, run_workers: bool = True) -> bool:
        """Connect the broker and start the worker pool.

        With ``run_workers=False`` only the broker is connected, for
        processes that enqueue or inspect jobs but never execute them.

        Returns ``True`` when jobs will be queued, ``False`` when the queue
        degraded to direct execution.
        """
        self._initialized = True
        if self._broker is None:
            logger.warning(
                "No broker configured - workflow queue disabled, falling back to direct execution"
            )
            return False

        try:
            await self._broker.connect()
        except Exception as exc:
            logger.error(
                f"Failed to initialize workflow queue: {describe_error(exc)}",
                exc_info=True,
            )
            self._available = False
            return False

        self._available = True
        self._stopping.clear()
        if not run_workers:
            logger.info("Workflow queue connected (producer only)")
            return True
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"stepwise-worker-{i}")
            for i in range(self.settings.concurrency)
        ]
        logger.info(
            f"Workflow queue started with concurrency={self.settings.concurrency}, "
            f"max_jobs_per_minute={self.settings.max_jobs_per_minute}"
        )
        return True

    async def shutdown(self, timeout: Optional[float] = 30.0) -> None:
        """Stop taking jobs, let in-flight jobs finish, then disconnect.

        Jobs still running after ``timeout`` seconds are cancelled and
        returned to the waiting state for another worker.
        """
        self._stopping.set()
        if self._workers:
            _, pending = await asyncio.wait(self._workers, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Cancelled {len(pending)} workers still running at shutdown")
                await asyncio.gather(*pending, return_exceptions=True)
            self._workers = []
        if self._broker is not None and self._available:
            await self._broker.disconnect()
        self._available = False
        logger.info("Workflow queue stopped")

    async def __aenter__(self) -> "ExecutionQueue":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    def is_available(self) -> bool:
        """Whether ``enqueue`` will queue (``True``) or run directly (``False``)."""
        return self._available

    # ------------------------------------------------------------------
    # Public API
    async def enqueue(
        self,
        workflow_id: str,
        user_id: str,
        trigger_type: str = "manual",
        trigger_data: Optional[Mapping[str, Any]] = None,
        priority: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> EnqueueResult:
        """Queue a workflow run, or execute it directly without a broker.

        Args:
            priority: Lower number runs first; best effort only.
            delay: Seconds to wait before the job becomes eligible.

        Both outcomes mean the run has started; a direct execution has
        already finished when this returns and its run is attached.
        """
        if self._broker is None or (self._initialized and not self._available):
            logger.info(
                f"No queue - executing workflow {workflow_id} directly (not queued)",
                extra={"workflow_id": workflow_id, "user_id": user_id},
            )
            run = await self.runner.run(workflow_id, user_id, trigger_type, trigger_data)
            return EnqueueResult(job_id=DIRECT_EXECUTION_JOB_ID, queued=False, run=run)

        if not self._initialized:
            raise QueueNotInitialized(
                "Workflow queue not initialized. Call start() first."
            )

        job = Job(
            workflow_id=workflow_id,
            user_id=user_id,
            trigger_type=trigger_type,
            trigger_data=dict(trigger_data or {}),
            priority=priority if priority is not None else self.settings.default_priority,
        )
        await self._broker.add(job, delay=delay or 0)
        logger.info(
            f"Workflow {workflow_id} queued for execution as job {job.id}",
            extra={
                "job_id": job.id,
                "workflow_id": workflow_id,
                "user_id": user_id,
                "trigger_type": trigger_type,
                "priority": job.priority,
                "delay": delay,
            },
        )
        return EnqueueResult(job_id=job.id, queued=True)

    async def stats(self) -> Optional[QueueStats]:
        """Snapshot of job counts, or ``None`` when no queue is running."""
        if self._broker is None or not self._available:
            return None
        return await self._broker.counts()

    async def get_job(self, job_id: str) -> Optional[Job]:
        if self._broker is None or not self._available:
            return None
        return await self._broker.get_job(job_id)

    async def clean(self) -> int:
        """Apply the retention policies now."""
        if self._broker is None or not self._available:
            return 0
        return await self._broker.clean()

    def cancel(self, job_id: str) -> bool:
        """Stop an active job before its next step and skip its retries.

        A step already in progress runs to completion. Returns ``False`` when
        the job is not active in this process.
        """
        event = self._cancel_events.get(job_id)
        if event is None:
            return False
        self._cancelled.add(job_id)
        event.set()
        return True

    @property
    def active_count(self) -> int:
        return len(self._active)

    # ------------------------------------------------------------------
    # Workers
    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), self.settings.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _worker_loop(self, worker_id: int) -> None:
        assert self._broker is not None
        logger.debug(f"Worker {worker_id} started")
        while not self._stopping.is_set():
            await self._limiter.acquire()
            try:
                job = await self._broker.fetch()
            except Exception as exc:
                self._limiter.release()
                logger.error(f"Worker {worker_id} failed to fetch job: {describe_error(exc)}")
                await self._idle()
                continue

            if job is None:
                self._limiter.release()
                await self._idle()
                continue

            try:
                await self._process(job)
            except Exception as exc:
                logger.error(
                    f"Worker {worker_id} failed while processing job {job.id}: "
                    f"{describe_error(exc)}",
                    exc_info=True,
                )
                await self._idle()
        logger.debug(f"Worker {worker_id} stopped")

    async def _process(self, job: Job) -> None:
        assert self._broker is not None
        self._active[job.id] = job
        self.peak_active = max(self.peak_active, len(self._active))
        cancel = asyncio.Event()
        self._cancel_events[job.id] = cancel
        logger.info(
            f"Executing workflow {job.workflow_id} from queue (job {job.id}, attempt {job.attempt})",
            extra={
                "job_id": job.id,
                "workflow_id": job.workflow_id,
                "user_id": job.user_id,
                "trigger_type": job.trigger_type,
                "attempt": job.attempt,
            },
        )

        async def save_checkpoint(checkpoint: Checkpoint) -> None:
            job.checkpoint = checkpoint

        resume = self.settings.resume_from_checkpoint
        try:
            try:
                run = await self.runner.run(
                    job.workflow_id,
                    job.user_id,
                    job.trigger_type,
                    job.trigger_data,
                    checkpoint=job.checkpoint if resume else None,
                    on_checkpoint=save_checkpoint if resume else None,
                    cancel=cancel,
                )
            except asyncio.CancelledError:
                logger.warning(f"Job {job.id} interrupted by shutdown; returning it to the queue")
                await asyncio.shield(self._broker.requeue(job))
                raise
            except Exception as exc:
                logger.error(
                    f"Job {job.id} raised while executing workflow {job.workflow_id}",
                    exc_info=True,
                )
                await self._handle_failure(job, describe_error(exc))
                return

            if run.status == "success":
                await self._broker.complete(job, self._summarize(run))
                logger.info(f"Job {job.id} completed (run {run.id})")
            else:
                error = f"Workflow execution failed: {run.error}"
                if run.error_step:
                    error += f" (step: {run.error_step})"
                await self._handle_failure(job, error)
        finally:
            self._active.pop(job.id, None)
            self._cancel_events.pop(job.id, None)
            self._cancelled.discard(job.id)

    async def _handle_failure(self, job: Job, error: str) -> None:
        assert self._broker is not None
        if job.id in self._cancelled:
            logger.info(f"Job {job.id} cancelled; not retrying")
            await self._broker.fail(job, error)
            return

        if job.attempt < self.settings.attempts:
            delay = compute_backoff(job.attempt, self.settings.backoff_delay)
            logger.warning(
                f"Job {job.id} attempt {job.attempt} failed: {error}; retrying in {delay:.1f}s"
            )
            await self._broker.retry(job, delay, error)
        else:
            logger.error(f"Job {job.id} failed after {job.attempt} attempts: {error}")
            await self._broker.fail(job, error)

    @staticmethod
    def _summarize(run: Run) -> Dict[str, Any]:
        return {
            "run_id": run.id,
            "status": run.status,
            "duration": run.duration,
        }
