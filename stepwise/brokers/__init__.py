"""Broker factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StepwiseConfig, load_config
from .base import BaseBroker
from .inmemory import InMemoryBroker


def get_broker(
    backend: Optional[str] = None, config: Optional[StepwiseConfig] = None
) -> Optional[BaseBroker]:
    """Factory function to get the configured broker.

    Returns ``None`` for the ``none`` backend, in which case the execution
    queue runs workflows directly.
    """

    config = config or load_config()
    backend = (
        backend
        or os.getenv("STEPWISE_BROKER")
        or config.broker.backend
    ).lower()
    queue_conf = config.queue

    if backend == "none":
        return None
    elif backend == "inmemory":
        return InMemoryBroker(
            remove_on_complete=queue_conf.remove_on_complete,
            remove_on_fail=queue_conf.remove_on_fail,
        )
    elif backend == "redis":
        from .redis import RedisBroker

        redis_conf = config.broker.redis
        return RedisBroker(
            url=redis_conf.url,
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            queue_name=config.broker.queue_name,
            remove_on_complete=queue_conf.remove_on_complete,
            remove_on_fail=queue_conf.remove_on_fail,
        )
    else:
        raise ValueError(f"Unsupported broker backend: {backend}")


__all__ = ["BaseBroker", "InMemoryBroker", "get_broker"]
