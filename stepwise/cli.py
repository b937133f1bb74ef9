"""Command line interface for running stepwise workflows and workers."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from stepwise import ExecutionQueue, ModuleRegistry, WorkflowRunner, get_repository
from stepwise.config import StepwiseConfig, load_config
from stepwise.errors import StepwiseError
from stepwise.logging import configure_logging
from stepwise.registry import load_registrations
from stepwise.workflows import FileWorkflowStore, InMemoryWorkflowStore, load_workflow_file

app = typer.Typer(help="CLI for stepwise workflows")

# Command groups
queue_app = typer.Typer(help="Commands for inspecting the execution queue")
runs_app = typer.Typer(help="Commands for inspecting workflow runs")

app.add_typer(queue_app, name="queue")
app.add_typer(runs_app, name="runs")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, help="Path to stepwise.yaml"),
    log_level: Optional[str] = typer.Option(None, help="Override the configured log level"),
) -> None:
    """Stepwise CLI entry point."""
    settings = load_config(str(config) if config else None)
    if log_level:
        settings.logging.level = log_level
    configure_logging(settings.logging.level, settings.logging.format)
    ctx.obj = settings


def _settings(ctx: typer.Context) -> StepwiseConfig:
    return ctx.obj if isinstance(ctx.obj, StepwiseConfig) else load_config()


def _parse_data(data: Optional[str]) -> Dict[str, Any]:
    if not data:
        return {}
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid JSON for --data: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    if not isinstance(parsed, dict):
        typer.secho("--data must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    return parsed


def _registry(modules: Optional[List[str]]) -> ModuleRegistry:
    registry = ModuleRegistry()
    load_registrations(registry, modules or [])
    return registry


def _repository(settings: StepwiseConfig):
    if settings.database_url:
        return get_repository(settings.database_url)
    return get_repository()


def _run_history(settings: StepwiseConfig):
    """Repository for commands that read runs recorded by earlier processes."""
    if not settings.database_url:
        typer.secho(
            "No run database configured. Set STEPWISE_DATABASE_URL or database_url "
            "in stepwise.yaml to keep run history between commands.",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)
    return get_repository(settings.database_url)


def _echo_json(value: Any) -> None:
    typer.echo(json.dumps(value, indent=2, default=str))


@app.command("run")
def run_workflow(
    ctx: typer.Context,
    workflow_file: Path,
    user: str = typer.Option("cli", "--user", "-u", help="User id for the run"),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="Trigger data as JSON"),
    modules: Optional[List[str]] = typer.Option(
        None, "--modules", "-m", help="Python module defining register_modules(registry)"
    ),
) -> None:
    """
    Execute a workflow file directly and print the resulting run.

    Example:
        stepwise run ./workflows/report.yaml -m myapp.modules -d '{"topic": "ai"}'
    """
    settings = _settings(ctx)
    trigger_data = _parse_data(data)
    try:
        workflow = load_workflow_file(workflow_file)
    except (OSError, ValueError) as exc:
        typer.secho(f"Cannot load workflow: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    runner = WorkflowRunner(
        _registry(modules),
        InMemoryWorkflowStore([workflow]),
        repository=_repository(settings),
    )
    run = asyncio.run(runner.run_workflow(workflow, user, "manual", trigger_data))
    _echo_json(run.model_dump(mode="json", by_alias=True))
    if run.status != "success":
        raise typer.Exit(code=1)


@app.command("enqueue")
def enqueue(
    ctx: typer.Context,
    workflow_id: str,
    workflows: Path = typer.Option(Path("workflows"), help="Directory of workflow files"),
    user: str = typer.Option("cli", "--user", "-u"),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="Trigger data as JSON"),
    trigger_type: str = typer.Option("manual", help="manual, cron, webhook, ..."),
    priority: Optional[int] = typer.Option(None, help="Lower runs first"),
    delay: Optional[float] = typer.Option(None, help="Seconds before the job is eligible"),
    modules: Optional[List[str]] = typer.Option(
        None, "--modules", "-m", help="Python module defining register_modules(registry)"
    ),
) -> None:
    """
    Request a workflow run through the queue.

    Without a reachable broker the workflow executes immediately in this
    process and the run is printed.
    """
    settings = _settings(ctx)
    trigger_data = _parse_data(data)
    runner = WorkflowRunner(
        _registry(modules),
        FileWorkflowStore(workflows),
        repository=_repository(settings),
    )

    async def _enqueue():
        queue = ExecutionQueue.from_config(runner, settings)
        await queue.start(run_workers=False)
        try:
            return await queue.enqueue(
                workflow_id, user, trigger_type, trigger_data, priority=priority, delay=delay
            )
        finally:
            await queue.shutdown()

    try:
        result = asyncio.run(_enqueue())
    except StepwiseError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if result.queued:
        typer.echo(f"Workflow queued for execution. Job ID: {result.job_id}")
        return
    typer.echo("Workflow executed directly (no queue available)")
    if result.run is not None:
        _echo_json(result.run.model_dump(mode="json", by_alias=True))
        if result.run.status != "success":
            raise typer.Exit(code=1)


@app.command("worker")
def worker(
    ctx: typer.Context,
    workflows: Path = typer.Option(Path("workflows"), help="Directory of workflow files"),
    modules: Optional[List[str]] = typer.Option(
        None, "--modules", "-m", help="Python module defining register_modules(registry)"
    ),
    lifespan: Optional[float] = typer.Option(
        None, help="Seconds to run before draining (default: run until stopped)"
    ),
) -> None:
    """
    Run the queue's worker pool against the configured broker.

    Example:
        stepwise worker --workflows ./workflows -m myapp.modules
    """
    settings = _settings(ctx)
    runner = WorkflowRunner(
        _registry(modules),
        FileWorkflowStore(workflows),
        repository=_repository(settings),
    )

    async def _work() -> bool:
        queue = ExecutionQueue.from_config(runner, settings)
        if not await queue.start():
            return False
        typer.echo(f"Worker started with concurrency {settings.queue.concurrency}")
        try:
            if lifespan is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(lifespan)
        finally:
            await queue.shutdown()
        return True

    try:
        started = asyncio.run(_work())
    except KeyboardInterrupt:
        typer.echo("Worker stopped")
        return
    if not started:
        typer.secho("Queue unavailable: no reachable broker configured", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@queue_app.command("stats")
def queue_stats(ctx: typer.Context) -> None:
    """Show job counts per state."""
    settings = _settings(ctx)
    runner = WorkflowRunner(ModuleRegistry(), InMemoryWorkflowStore())

    async def _stats():
        queue = ExecutionQueue.from_config(runner, settings)
        await queue.start(run_workers=False)
        try:
            return await queue.stats()
        finally:
            await queue.shutdown()

    stats = asyncio.run(_stats())
    if stats is None:
        typer.echo("Queue unavailable (direct execution mode)")
        raise typer.Exit(code=1)
    _echo_json(stats.as_dict())


@queue_app.command("job")
def queue_job(ctx: typer.Context, job_id: str) -> None:
    """Show a queued, completed or failed job."""
    settings = _settings(ctx)
    runner = WorkflowRunner(ModuleRegistry(), InMemoryWorkflowStore())

    async def _job():
        queue = ExecutionQueue.from_config(runner, settings)
        await queue.start(run_workers=False)
        try:
            return await queue.get_job(job_id)
        finally:
            await queue.shutdown()

    job = asyncio.run(_job())
    if job is None:
        typer.echo("Job not found")
        raise typer.Exit(code=1)
    _echo_json(job.model_dump(mode="json", by_alias=True))


@runs_app.command("list")
def runs_list(
    ctx: typer.Context,
    workflow_id: Optional[str] = typer.Option(None, "--workflow", "-w"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n"),
) -> None:
    """
    List runs with their status, newest first.

    Example:
        stepwise runs list --workflow report -n 20
        # Output: 1f0c...    report    success    412ms
    """
    repo = _run_history(_settings(ctx))
    runs = asyncio.run(repo.list_runs(workflow_id=workflow_id, limit=limit))
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        duration = f"{run.duration}ms" if run.duration is not None else "-"
        typer.echo(f"{run.id}\t{run.workflow_id}\t{run.status}\t{duration}")


@runs_app.command("show")
def runs_show(ctx: typer.Context, run_id: str) -> None:
    """Show the details of one run, including the failing step on error."""
    repo = _run_history(_settings(ctx))
    run = asyncio.run(repo.get_run(run_id))
    if run is None:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    typer.echo(f"Run {run.id}: {run.status}")
    typer.echo(f"Workflow: {run.workflow_id} (user {run.user_id}, trigger {run.trigger_type})")
    if run.duration is not None:
        typer.echo(f"Duration: {run.duration}ms")
    if run.status == "error":
        typer.echo(f"Error: {run.error or 'Unknown error occurred'}")
        if run.error_step:
            typer.echo(f"Failed at step: {run.error_step}")
    elif run.status == "success":
        typer.echo("Output:")
        _echo_json(run.output)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
