"""Simple example running a workflow directly, without a queue."""

import asyncio
from datetime import datetime, timedelta, timezone

from stepwise import InMemoryWorkflowStore, ModuleRegistry, Step, Workflow, WorkflowRunner

registry = ModuleRegistry()


@registry.module("time.now")
def now() -> str:
    return datetime.now(timezone.utc).isoformat()


@registry.module("time.addDays")
def add_days(date: str, days: int) -> str:
    return (datetime.fromisoformat(date) + timedelta(days=days)).isoformat()


async def main():
    """Run a two-step workflow and print the filtered output."""
    workflow = Workflow(
        id="next-week",
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
    runner = WorkflowRunner(registry, InMemoryWorkflowStore([workflow]))

    run = await runner.run("next-week", user_id="user-123", trigger_type="manual")

    print(f"✅ Run finished with status: {run.status}")
    print(f"⏱️  Duration: {run.duration}ms")
    print(f"📦 Output: {run.output}")


if __name__ == "__main__":
    asyncio.run(main())
