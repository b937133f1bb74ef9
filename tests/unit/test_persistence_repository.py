from datetime import datetime, timedelta, timezone

import pytest

import stepwise.persistence as persistence
from stepwise.contracts import Run
from stepwise.persistence import (
    InMemoryRunRepository,
    SQLiteRunRepository,
    get_repository,
)


def _finish(run: Run, **changes) -> Run:
    return run.model_copy(update={"status": "success", "duration": 12, **changes})


@pytest.mark.asyncio
async def test_sqlite_repository_crud(tmp_path):
    repo = SQLiteRunRepository(tmp_path / "runs.db")
    run = Run(workflow_id="wf", user_id="u1", trigger_type="cron")
    await repo.create_run(run)

    stored = await repo.get_run(run.id)
    assert stored is not None
    assert stored.status == "running"
    assert stored.trigger_type == "cron"

    await repo.complete_run(_finish(run, output={"future": "2024-01-06"}))
    stored = await repo.get_run(run.id)
    assert stored.status == "success"
    assert stored.duration == 12
    assert stored.output == {"future": "2024-01-06"}
    repo.close()


@pytest.mark.asyncio
async def test_sqlite_repository_terminal_run_is_not_overwritten(tmp_path):
    repo = SQLiteRunRepository(tmp_path / "runs.db")
    run = Run(workflow_id="wf", user_id="u1")
    await repo.create_run(run)
    await repo.complete_run(
        run.model_copy(update={"status": "error", "error": "boom", "error_step": "s2"})
    )
    await repo.complete_run(_finish(run))

    stored = await repo.get_run(run.id)
    assert stored.status == "error"
    assert stored.error == "boom"
    assert stored.error_step == "s2"
    repo.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("factory", ["memory", "sqlite"])
async def test_list_runs_filters_newest_first(tmp_path, factory):
    repo = (
        InMemoryRunRepository()
        if factory == "memory"
        else SQLiteRunRepository(tmp_path / "runs.db")
    )
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    first = Run(workflow_id="a", user_id="u1", started_at=base)
    second = Run(workflow_id="a", user_id="u2", started_at=base + timedelta(minutes=1))
    other = Run(workflow_id="b", user_id="u1", started_at=base + timedelta(minutes=2))
    for run in (first, second, other):
        await repo.create_run(run)

    runs = await repo.list_runs(workflow_id="a")
    assert [r.id for r in runs] == [second.id, first.id]
    assert [r.id for r in await repo.list_runs(user_id="u1", limit=1)] == [other.id]
    assert await repo.get_run("missing") is None


@pytest.mark.asyncio
async def test_inmemory_repository_returns_copies():
    repo = InMemoryRunRepository()
    run = Run(workflow_id="wf", user_id="u1")
    await repo.create_run(run)
    run.status = "success"
    stored = await repo.get_run(run.id)
    assert stored.status == "running"


def test_get_repository_selects_backend(tmp_path):
    repo = get_repository()
    assert isinstance(repo, InMemoryRunRepository)
    assert get_repository() is repo

    sqlite_repo = get_repository(f"sqlite://{tmp_path / 'runs.db'}")
    assert isinstance(sqlite_repo, SQLiteRunRepository)
    assert persistence._repository_instance is sqlite_repo
    sqlite_repo.close()

    with pytest.raises(ValueError):
        get_repository("mysql://localhost/db")
