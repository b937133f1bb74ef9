"""Example queueing workflow runs with retries and a bounded worker pool.

Uses the in-memory broker so it runs without Redis. Set
``STEPWISE_REDIS_URL`` and use ``ExecutionQueue.from_config`` to run the
same code against a shared Redis queue.
"""

import asyncio
import random

from stepwise import (
    ExecutionQueue,
    InMemoryBroker,
    InMemoryWorkflowStore,
    ModuleRegistry,
    Step,
    Workflow,
    WorkflowRunner,
)
from stepwise.config import QueueConfig
from stepwise.logging import configure_logging

registry = ModuleRegistry()


@registry.module("http.fetch")
async def fetch(url: str) -> dict:
    await asyncio.sleep(0.1)
    if random.random() < 0.3:
        raise ConnectionError(f"Timed out fetching {url}")
    return {"url": url, "status": 200}


async def main():
    configure_logging("INFO")

    workflow = Workflow(
        id="ping",
        steps=[
            Step(
                id="fetch",
                module="http.fetch",
                inputs={"url": "{{trigger.url}}"},
                outputAs="response",
            )
        ],
        returnValue="{{response.status}}",
    )
    runner = WorkflowRunner(registry, InMemoryWorkflowStore([workflow]))
    broker = InMemoryBroker()
    settings = QueueConfig(concurrency=3, backoff_delay=0.5)

    async with ExecutionQueue(runner, broker, settings) as queue:
        jobs = [
            await queue.enqueue("ping", "user-123", "webhook", {"url": f"https://example.com/{i}"})
            for i in range(5)
        ]
        print(f"📋 Queued jobs: {[j.job_id for j in jobs]}")

        while (stats := await queue.stats()).total:
            await asyncio.sleep(0.2)
        print(f"📊 Final stats: {stats.as_dict()}")


if __name__ == "__main__":
    asyncio.run(main())
