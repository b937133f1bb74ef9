from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    COMPLETED_RETENTION,
    DEFAULT_BACKOFF_DELAY,
    DEFAULT_CONCURRENCY,
    DEFAULT_JOB_ATTEMPTS,
    DEFAULT_JOB_PRIORITY,
    DEFAULT_MAX_JOBS_PER_MINUTE,
    FAILED_RETENTION,
    WORKFLOW_QUEUE_NAME,
)


class RedisConfig(BaseModel):
    """Configuration for the Redis broker."""

    url: Optional[str] = None
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class BrokerConfig(BaseModel):
    """Queue broker settings. ``none`` means direct execution."""

    backend: Literal["none", "inmemory", "redis"] = "none"
    queue_name: str = WORKFLOW_QUEUE_NAME
    redis: RedisConfig = RedisConfig()


class RetentionPolicy(BaseModel):
    """Bounds on how long and how many finished jobs are kept."""

    age: float = Field(..., description="Maximum age in seconds")
    count: int = Field(..., description="Maximum number of jobs")


class QueueConfig(BaseModel):
    """Worker pool, retry and rate limit settings."""

    concurrency: int = Field(DEFAULT_CONCURRENCY, ge=1)
    max_jobs_per_minute: int = Field(DEFAULT_MAX_JOBS_PER_MINUTE, ge=1)
    rate_limit_window: float = Field(60.0, gt=0)
    attempts: int = Field(DEFAULT_JOB_ATTEMPTS, ge=1)
    backoff_delay: float = Field(DEFAULT_BACKOFF_DELAY, ge=0)
    default_priority: int = DEFAULT_JOB_PRIORITY
    poll_interval: float = Field(0.1, gt=0)
    resume_from_checkpoint: bool = False
    remove_on_complete: RetentionPolicy = RetentionPolicy(
        age=COMPLETED_RETENTION[0], count=COMPLETED_RETENTION[1]
    )
    remove_on_fail: RetentionPolicy = RetentionPolicy(
        age=FAILED_RETENTION[0], count=FAILED_RETENTION[1]
    )


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: Literal["plain", "json"] = "plain"


class StepwiseConfig(BaseModel):
    """Top-level configuration model."""

    broker: BrokerConfig = BrokerConfig()
    queue: QueueConfig = QueueConfig()
    logging: LoggingConfig = LoggingConfig()
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> StepwiseConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPWISE_CONFIG env
            variable or 'stepwise.yaml' in the current directory.

    Environment overrides: ``STEPWISE_REDIS_URL``/``REDIS_URL`` select the
    Redis broker, ``STEPWISE_BROKER`` forces a backend,
    ``STEPWISE_DATABASE_URL``/``DATABASE_URL`` set the run database and
    ``STEPWISE_LOG_LEVEL`` the log level.
    """

    config_path = path or os.getenv("STEPWISE_CONFIG", "stepwise.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StepwiseConfig(**data)
    else:
        config = StepwiseConfig()

    redis_url = os.getenv("STEPWISE_REDIS_URL") or os.getenv("REDIS_URL")
    if redis_url:
        config.broker.redis.url = redis_url
        config.broker.backend = "redis"

    env_backend = os.getenv("STEPWISE_BROKER")
    if env_backend:
        config.broker.backend = env_backend.lower()  # type: ignore[assignment]

    env_db_url = os.getenv("STEPWISE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url

    env_log_level = os.getenv("STEPWISE_LOG_LEVEL")
    if env_log_level:
        config.logging.level = env_log_level
    return config
