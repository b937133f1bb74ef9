"""Tests for configuration loading."""

from stepwise.brokers import InMemoryBroker, get_broker
from stepwise.brokers.redis import RedisBroker
from stepwise.config import load_config


def test_defaults_without_config_file():
    config = load_config()
    assert config.broker.backend == "none"
    assert config.queue.concurrency == 10
    assert config.queue.max_jobs_per_minute == 100
    assert config.queue.attempts == 3
    assert config.queue.backoff_delay == 10.0
    assert config.queue.default_priority == 5
    assert config.queue.remove_on_complete.age == 86_400
    assert config.queue.remove_on_complete.count == 1_000
    assert config.queue.remove_on_fail.age == 604_800
    assert config.queue.remove_on_fail.count == 5_000
    assert get_broker(config=config) is None


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
broker:
  backend: redis
  redis:
    host: testhost
    port: 1234
queue:
  concurrency: 4
  attempts: 5
logging:
  format: json
"""
    )
    monkeypatch.setenv("STEPWISE_CONFIG", str(config_path))

    config = load_config()
    assert config.broker.backend == "redis"
    assert config.broker.redis.host == "testhost"
    assert config.broker.redis.port == 1234
    assert config.queue.concurrency == 4
    assert config.queue.attempts == 5
    assert config.logging.format == "json"


def test_redis_url_env_selects_redis_broker(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/2")
    config = load_config()
    assert config.broker.backend == "redis"

    broker = get_broker(config=config)
    assert isinstance(broker, RedisBroker)
    assert broker.url == "redis://cache:6379/2"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("STEPWISE_BROKER", "inmemory")
    monkeypatch.setenv("STEPWISE_DATABASE_URL", "sqlite://runs.db")
    monkeypatch.setenv("STEPWISE_LOG_LEVEL", "DEBUG")

    config = load_config()
    assert config.database_url == "sqlite://runs.db"
    assert config.logging.level == "DEBUG"
    assert isinstance(get_broker(config=config), InMemoryBroker)


def test_get_broker_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
broker:
  backend: redis
  queue_name: nightly
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("STEPWISE_CONFIG", str(config_path))

    broker = get_broker()
    assert isinstance(broker, RedisBroker)
    assert broker.host == "confighost"
    assert broker.port == 6380
    assert broker.prefix == "stepwise:nightly"
