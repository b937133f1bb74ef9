"""Shared fixtures for the stepwise test suite."""

from datetime import datetime, timedelta, timezone

import pytest

import stepwise.persistence as persistence
from stepwise.registry import ModuleRegistry

_ENV_VARS = (
    "STEPWISE_CONFIG",
    "STEPWISE_BROKER",
    "STEPWISE_REDIS_URL",
    "REDIS_URL",
    "STEPWISE_DATABASE_URL",
    "DATABASE_URL",
    "STEPWISE_LOG_LEVEL",
)

FIXED_NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep tests independent of the developer's environment and config file."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    persistence._repository_instance = None
    yield
    persistence._repository_instance = None


@pytest.fixture
def registry() -> ModuleRegistry:
    """Registry with a few deterministic modules."""
    reg = ModuleRegistry()

    @reg.module("time.now")
    def now() -> str:
        return FIXED_NOW.isoformat()

    @reg.module("time.addDays")
    def add_days(date: str, days: int) -> str:
        return (datetime.fromisoformat(date) + timedelta(days=days)).isoformat()

    @reg.module("math.add")
    async def add(a: int, b: int) -> int:
        return a + b

    @reg.module("util.echo")
    def echo(value=None):
        return value

    @reg.module("util.fail")
    def fail(message: str = "boom"):
        raise RuntimeError(message)

    return reg
