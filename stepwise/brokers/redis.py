"""Redis broker for cross-process job queues."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..config import RetentionPolicy
from ..contracts import Job, QueueStats
from ..errors import BrokerUnavailable
from .base import BaseBroker

logger = logging.getLogger(__name__)

# Waiting jobs are ordered by priority first, then by enqueue time.
_PRIORITY_WEIGHT = 10**13


def _now_ms() -> int:
    return int(time.time() * 1000)


class RedisBroker(BaseBroker):
    """Redis-based job store.

    Layout under ``stepwise:<queue_name>``: one JSON string per job plus
    sorted sets ``waiting`` (priority, then enqueue time), ``delayed`` (due
    time), ``active`` (start time), ``completed`` and ``failed`` (finish
    time). Each transition runs in a MULTI/EXEC pipeline.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        queue_name: str = "workflows-execution",
        remove_on_complete: Optional[RetentionPolicy] = None,
        remove_on_fail: Optional[RetentionPolicy] = None,
    ) -> None:
        super().__init__(remove_on_complete, remove_on_fail)

        self.url = url
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.queue_name = queue_name
        self.prefix = f"stepwise:{queue_name}"
        self._redis: Optional[Any] = None

    # ------------------------------------------------------------------
    def _key(self, name: str) -> str:
        return f"{self.prefix}:{name}"

    def _job_key(self, job_id: str) -> str:
        return f"{self.prefix}:job:{job_id}"

    async def connect(self) -> None:
        """Connect to Redis and verify the connection."""
        if self.url:
            self._redis = redis.Redis.from_url(self.url, decode_responses=True)
        else:
            self._redis = redis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                decode_responses=True,
            )
        try:
            await self._redis.ping()
        except (RedisError, OSError) as exc:
            await self._redis.aclose()
            self._redis = None
            raise BrokerUnavailable(f"Cannot reach Redis: {exc}") from exc

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Any:
        if not self._redis:
            await self.connect()
        return self._redis

    async def _load(self, job_id: str) -> Optional[Job]:
        client = await self._client()
        data = await client.get(self._job_key(job_id))
        return Job.from_json(data) if data else None

    # ------------------------------------------------------------------
    async def add(self, job: Job, delay: float = 0) -> None:
        client = await self._client()
        now = _now_ms()
        async with client.pipeline(transaction=True) as pipe:
            if delay and delay > 0:
                job.state = "delayed"
                pipe.set(self._job_key(job.id), job.to_json())
                pipe.zadd(self._key("delayed"), {job.id: now + int(delay * 1000)})
            else:
                job.state = "waiting"
                pipe.set(self._job_key(job.id), job.to_json())
                pipe.zadd(
                    self._key("waiting"), {job.id: job.priority * _PRIORITY_WEIGHT + now}
                )
            await pipe.execute()

    async def _promote_due(self) -> None:
        client = await self._client()
        now = _now_ms()
        due: List[str] = await client.zrangebyscore(self._key("delayed"), "-inf", now)
        for job_id in due:
            # Only the worker whose ZREM removed the entry may promote it.
            if not await client.zrem(self._key("delayed"), job_id):
                continue
            job = await self._load(job_id)
            if job is None:
                continue
            job.state = "waiting"
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(self._job_key(job_id), job.to_json())
                pipe.zadd(
                    self._key("waiting"),
                    {job_id: job.priority * _PRIORITY_WEIGHT + now},
                )
                await pipe.execute()

    async def fetch(self) -> Optional[Job]:
        client = await self._client()
        await self._promote_due()
        while True:
            popped = await client.zpopmin(self._key("waiting"), 1)
            if not popped:
                return None
            job_id, _ = popped[0]
            job = await self._load(job_id)
            if job is None:
                logger.warning(f"Dropping waiting entry for missing job {job_id}")
                continue
            job.state = "active"
            job.processed_at = datetime.now(timezone.utc)
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(self._job_key(job_id), job.to_json())
                pipe.zadd(self._key("active"), {job_id: _now_ms()})
                await pipe.execute()
            return job

    async def _finish(self, job: Job, target: str, policy: RetentionPolicy) -> None:
        client = await self._client()
        job.finished_at = datetime.now(timezone.utc)
        async with client.pipeline(transaction=True) as pipe:
            pipe.zrem(self._key("active"), job.id)
            pipe.set(self._job_key(job.id), job.to_json())
            pipe.zadd(self._key(target), {job.id: _now_ms()})
            await pipe.execute()
        await self._trim(target, policy)

    async def complete(self, job: Job, result: Optional[Dict[str, Any]] = None) -> None:
        job.state = "completed"
        job.result = result
        await self._finish(job, "completed", self.remove_on_complete)

    async def retry(self, job: Job, delay: float, error: str) -> None:
        client = await self._client()
        job.attempt += 1
        job.failed_reason = error
        job.state = "delayed"
        async with client.pipeline(transaction=True) as pipe:
            pipe.zrem(self._key("active"), job.id)
            pipe.set(self._job_key(job.id), job.to_json())
            pipe.zadd(self._key("delayed"), {job.id: _now_ms() + int(delay * 1000)})
            await pipe.execute()

    async def requeue(self, job: Job) -> None:
        client = await self._client()
        job.state = "waiting"
        async with client.pipeline(transaction=True) as pipe:
            pipe.zrem(self._key("active"), job.id)
            pipe.set(self._job_key(job.id), job.to_json())
            pipe.zadd(
                self._key("waiting"), {job.id: job.priority * _PRIORITY_WEIGHT + _now_ms()}
            )
            await pipe.execute()

    async def fail(self, job: Job, error: str) -> None:
        job.state = "failed"
        job.failed_reason = error
        await self._finish(job, "failed", self.remove_on_fail)

    async def _trim(self, target: str, policy: RetentionPolicy) -> int:
        client = await self._client()
        key = self._key(target)
        cutoff = _now_ms() - int(policy.age * 1000)
        expired: List[str] = list(await client.zrangebyscore(key, "-inf", f"({cutoff}"))
        size = await client.zcard(key) - len(expired)
        if size > policy.count:
            overflow = await client.zrange(
                key, len(expired), len(expired) + size - policy.count - 1
            )
            expired.extend(overflow)
        if not expired:
            return 0
        async with client.pipeline(transaction=True) as pipe:
            pipe.zrem(key, *expired)
            pipe.delete(*(self._job_key(job_id) for job_id in expired))
            await pipe.execute()
        return len(expired)

    async def get_job(self, job_id: str) -> Optional[Job]:
        return await self._load(job_id)

    async def counts(self) -> QueueStats:
        client = await self._client()
        async with client.pipeline(transaction=False) as pipe:
            for name in ("waiting", "active", "completed", "failed", "delayed"):
                pipe.zcard(self._key(name))
            waiting, active, completed, failed, delayed = await pipe.execute()
        return QueueStats(
            waiting=waiting,
            active=active,
            completed=completed,
            failed=failed,
            delayed=delayed,
        )

    async def clean(self) -> int:
        return await self._trim("completed", self.remove_on_complete) + await self._trim(
            "failed", self.remove_on_fail
        )
