"""Execution queue tests against the in-memory broker."""

import asyncio

import pytest

from stepwise import ExecutionQueue, WorkflowRunner
from stepwise.brokers.inmemory import InMemoryBroker
from stepwise.config import QueueConfig
from stepwise.contracts import Step, Workflow
from stepwise.errors import BrokerUnavailable, QueueNotInitialized
from stepwise.persistence import InMemoryRunRepository
from stepwise.utils.ratelimit import SlidingWindowRateLimiter
from stepwise.workflows import InMemoryWorkflowStore


class RecordingBroker(InMemoryBroker):
    """In-memory broker that remembers the retry delays it was asked for."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.retry_delays = []

    async def retry(self, job, delay, error):
        self.retry_delays.append(delay)
        await super().retry(job, delay, error)


class FlakyCompleteBroker(InMemoryBroker):
    """In-memory broker whose first completion raises a connection error."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.complete_calls = 0

    async def complete(self, job, result=None):
        self.complete_calls += 1
        if self.complete_calls == 1:
            raise ConnectionError("Connection reset by peer")
        await super().complete(job, result)


class UnreachableBroker(InMemoryBroker):
    async def connect(self):
        raise BrokerUnavailable("Cannot reach Redis: connection refused")


def _settings(**overrides) -> QueueConfig:
    values = {"concurrency": 2, "poll_interval": 0.01, "backoff_delay": 0.01}
    values.update(overrides)
    return QueueConfig(**values)


def _runner(registry, *workflows) -> WorkflowRunner:
    return WorkflowRunner(
        registry, InMemoryWorkflowStore(workflows), repository=InMemoryRunRepository()
    )


async def _wait_for_state(broker, job_id, states=("completed", "failed"), timeout=5.0):
    async def _poll():
        while True:
            job = await broker.get_job(job_id)
            if job is not None and job.state in states:
                return job
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(_poll(), timeout)


@pytest.mark.asyncio
async def test_queued_job_completes(registry):
    workflow = Workflow(
        id="sum",
        steps=[Step(id="s1", module="math.add", inputs={"a": 1, "b": 1}, outputAs="total")],
        returnValue="{{total}}",
    )
    runner = _runner(registry, workflow)
    broker = InMemoryBroker()

    async with ExecutionQueue(runner, broker, _settings()) as queue:
        assert queue.is_available()
        result = await queue.enqueue("sum", "u1", "cron")
        assert result.queued
        assert result.job_id != "direct-execution"
        assert result.run is None

        job = await _wait_for_state(broker, result.job_id)
        assert job.state == "completed"
        assert job.name == "workflow-sum"
        assert job.result["status"] == "success"

        run = await runner.repository.get_run(job.result["run_id"])
        assert run.output == 2
        assert run.trigger_type == "cron"

        stats = await queue.stats()
        assert stats.completed == 1
        assert stats.total == 0


@pytest.mark.asyncio
async def test_concurrency_is_bounded(registry):
    @registry.module("util.slow")
    async def slow():
        await asyncio.sleep(0.05)
        return "ok"

    workflow = Workflow(id="slow", steps=[Step(id="s1", module="util.slow")])
    broker = InMemoryBroker()
    queue = ExecutionQueue(_runner(registry, workflow), broker, _settings(concurrency=2))
    await queue.start()
    try:
        results = [await queue.enqueue("slow", "u1") for _ in range(6)]
        for result in results:
            await _wait_for_state(broker, result.job_id)
    finally:
        await queue.shutdown()

    assert queue.peak_active == 2
    assert (await broker.counts()).completed == 6


@pytest.mark.asyncio
async def test_failed_job_retries_with_exponential_backoff(registry):
    attempts = []

    @registry.module("util.flaky")
    def flaky():
        attempts.append(1)
        raise RuntimeError("upstream unavailable")

    workflow = Workflow(id="flaky", steps=[Step(id="call", module="util.flaky")])
    runner = _runner(registry, workflow)
    broker = RecordingBroker()

    async with ExecutionQueue(runner, broker, _settings(attempts=3)) as queue:
        result = await queue.enqueue("flaky", "u1")
        job = await _wait_for_state(broker, result.job_id, states=("failed",))

    assert len(attempts) == 3
    assert broker.retry_delays == pytest.approx([0.01, 0.02])
    assert job.attempt == 3
    assert job.failed_reason == "Workflow execution failed: upstream unavailable (step: call)"

    runs = await runner.repository.list_runs(workflow_id="flaky")
    assert len(runs) == 3
    assert all(r.status == "error" and r.error_step == "call" for r in runs)


@pytest.mark.asyncio
async def test_retry_succeeds_on_later_attempt(registry):
    calls = []

    @registry.module("util.recovering")
    def recovering():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("temporary")
        return "fine"

    workflow = Workflow(
        id="recovering",
        steps=[Step(id="s1", module="util.recovering", outputAs="value")],
    )
    broker = InMemoryBroker()
    async with ExecutionQueue(_runner(registry, workflow), broker, _settings()) as queue:
        result = await queue.enqueue("recovering", "u1")
        job = await _wait_for_state(broker, result.job_id)

    assert job.state == "completed"
    assert job.attempt == 2
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_retry_resumes_from_checkpoint(registry):
    calls = {"a": 0, "b": 0}

    @registry.module("util.first")
    def first():
        calls["a"] += 1
        return "a-done"

    @registry.module("util.second")
    def second(previous):
        calls["b"] += 1
        if calls["b"] == 1:
            raise RuntimeError("temporary")
        return f"{previous}+b"

    workflow = Workflow(
        id="two-step",
        steps=[
            Step(id="a", module="util.first", outputAs="a"),
            Step(id="b", module="util.second", inputs={"previous": "{{a}}"}, outputAs="b"),
        ],
        returnValue="{{b}}",
    )
    runner = _runner(registry, workflow)
    broker = InMemoryBroker()
    settings = _settings(resume_from_checkpoint=True)

    async with ExecutionQueue(runner, broker, settings) as queue:
        result = await queue.enqueue("two-step", "u1")
        job = await _wait_for_state(broker, result.job_id)

    assert job.state == "completed"
    assert calls == {"a": 1, "b": 2}
    run = await runner.repository.get_run(job.result["run_id"])
    assert run.output == "a-done+b"


@pytest.mark.asyncio
async def test_cancelled_job_is_not_retried(registry):
    gate = asyncio.Event()

    @registry.module("util.wait")
    async def wait():
        await gate.wait()
        return "released"

    workflow = Workflow(
        id="gated",
        steps=[
            Step(id="s1", module="util.wait"),
            Step(id="s2", module="util.echo", inputs={"value": 1}),
        ],
    )
    broker = InMemoryBroker()
    async with ExecutionQueue(_runner(registry, workflow), broker, _settings()) as queue:
        result = await queue.enqueue("gated", "u1")
        while queue.active_count == 0:
            await asyncio.sleep(0.01)
        assert queue.cancel(result.job_id)
        assert not queue.cancel("unknown-job")
        gate.set()
        job = await _wait_for_state(broker, result.job_id)

    assert job.state == "failed"
    assert job.attempt == 1
    assert job.failed_reason == "Workflow execution failed: Run cancelled (step: s2)"


@pytest.mark.asyncio
async def test_rate_limit_defers_job_starts(registry):
    workflow = Workflow(id="noop", steps=[])
    broker = InMemoryBroker()
    limiter = SlidingWindowRateLimiter(2, window=60)
    queue = ExecutionQueue(_runner(registry, workflow), broker, _settings(), limiter=limiter)
    await queue.start()
    try:
        results = [await queue.enqueue("noop", "u1") for _ in range(3)]
        for result in results[:2]:
            await _wait_for_state(broker, result.job_id)
        await asyncio.sleep(0.05)
        stats = await queue.stats()
    finally:
        await queue.shutdown(timeout=0.1)

    assert stats.completed == 2
    assert stats.waiting == 1


@pytest.mark.asyncio
async def test_direct_execution_matches_queued_output(registry):
    workflow = Workflow(
        id="dates",
        steps=[
            Step(id="s1", module="time.now", outputAs="now"),
            Step(
                id="s2",
                module="time.addDays",
                inputs={"date": "{{now}}", "days": 5},
                outputAs="future",
            ),
        ],
    )
    direct_queue = ExecutionQueue(_runner(registry, workflow))
    await direct_queue.start()
    assert not direct_queue.is_available()
    direct = await direct_queue.enqueue("dates", "u1")
    assert direct.job_id == "direct-execution"
    assert not direct.queued
    assert direct.run.status == "success"
    assert await direct_queue.stats() is None

    runner = _runner(registry, workflow)
    broker = InMemoryBroker()
    async with ExecutionQueue(runner, broker, _settings()) as queue:
        queued = await queue.enqueue("dates", "u1")
        job = await _wait_for_state(broker, queued.job_id)

    queued_run = await runner.repository.get_run(job.result["run_id"])
    assert queued_run.output == direct.run.output


@pytest.mark.asyncio
async def test_unreachable_broker_falls_back_to_direct(registry):
    workflow = Workflow(id="noop", steps=[])
    queue = ExecutionQueue(_runner(registry, workflow), UnreachableBroker(), _settings())

    assert await queue.start() is False
    result = await queue.enqueue("noop", "u1")
    assert result.job_id == "direct-execution"
    assert result.run.status == "success"
    assert result.run.output == {}
    await queue.shutdown()


@pytest.mark.asyncio
async def test_enqueue_before_start_raises(registry):
    queue = ExecutionQueue(_runner(registry), InMemoryBroker(), _settings())
    with pytest.raises(QueueNotInitialized):
        await queue.enqueue("anything", "u1")


@pytest.mark.asyncio
async def test_delayed_and_prioritized_enqueue(registry):
    workflow = Workflow(id="noop", steps=[])
    broker = InMemoryBroker()
    queue = ExecutionQueue(_runner(registry, workflow), broker, _settings())
    await queue.start(run_workers=False)
    try:
        delayed = await queue.enqueue("noop", "u1", delay=60)
        urgent = await queue.enqueue("noop", "u1", priority=1)
        stats = await queue.stats()
        assert stats.delayed == 1
        assert stats.waiting == 1
        assert (await queue.get_job(urgent.job_id)).priority == 1
        assert (await queue.get_job(delayed.job_id)).state == "delayed"
    finally:
        await queue.shutdown()


@pytest.mark.asyncio
async def test_worker_survives_broker_error_after_execution(registry):
    workflow = Workflow(
        id="echo", steps=[Step(id="s1", module="util.echo", inputs={"value": 1})]
    )
    broker = FlakyCompleteBroker()
    settings = _settings(concurrency=1)
    async with ExecutionQueue(_runner(registry, workflow), broker, settings) as queue:
        first = await queue.enqueue("echo", "u1")
        second = await queue.enqueue("echo", "u1")
        job = await _wait_for_state(broker, second.job_id)

        assert job.state == "completed"
        assert broker.complete_calls == 2
        assert len(queue._workers) == 1
        assert not queue._workers[0].done()

    # The first job's completion was lost; it stays claimed.
    assert (await broker.get_job(first.job_id)).state == "active"


@pytest.mark.asyncio
async def test_shutdown_timeout_returns_running_job_to_waiting(registry):
    started = asyncio.Event()

    @registry.module("util.block")
    async def block():
        started.set()
        await asyncio.Event().wait()

    workflow = Workflow(id="stuck", steps=[Step(id="s1", module="util.block")])
    runner = _runner(registry, workflow)
    broker = InMemoryBroker()
    queue = ExecutionQueue(runner, broker, _settings(concurrency=1))
    await queue.start()
    result = await queue.enqueue("stuck", "u1")
    await asyncio.wait_for(started.wait(), 5.0)

    await queue.shutdown(timeout=0.05)

    job = await broker.get_job(result.job_id)
    assert job.state == "waiting"
    assert job.attempt == 1
    assert queue.active_count == 0
    assert (await broker.counts()).active == 0

    runs = await runner.repository.list_runs(workflow_id="stuck")
    assert len(runs) == 1
    assert runs[0].status == "error"
    assert runs[0].error == "Run cancelled"
