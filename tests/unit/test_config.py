"""Tests for configuration loading."""

import pytest

from jobrelay.config import load_config
from jobrelay.fanout import get_fanout
from jobrelay.fanout.redis import RedisFanout
from jobrelay.persistence import InMemoryRepository, SQLiteRepository, get_repository


def test_load_config_from_yaml(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
worker:
  base_url: http://worker:9000
  timeout: 3
security:
  api_key: yaml-key
fanout:
  backend: redis
  heartbeat_interval: 15
  redis:
    host: testhost
    port: 1234
rate_limit:
  min_interval_seconds: 20
"""
    )
    monkeypatch.setenv("JOBRELAY_CONFIG", str(config_path))
    monkeypatch.delenv("JOBRELAY_API_KEY", raising=False)
    monkeypatch.delenv("JOBRELAY_WORKER_URL", raising=False)
    monkeypatch.delenv("JOBRELAY_FANOUT", raising=False)

    config = load_config()
    assert config.worker.base_url == "http://worker:9000"
    assert config.worker.timeout == 3
    assert config.security.api_key == "yaml-key"
    assert config.fanout.backend == "redis"
    assert config.fanout.heartbeat_interval == 15
    assert config.fanout.redis.host == "testhost"
    assert config.rate_limit.min_interval_seconds == 20
    assert config.rate_limit.backend == "inmemory"


def test_environment_overrides_yaml(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("security:\n  api_key: yaml-key\n")
    monkeypatch.setenv("JOBRELAY_API_KEY", "env-key")
    monkeypatch.setenv("JOBRELAY_SHARED_SECRET", "env-secret")
    monkeypatch.setenv("JOBRELAY_WORKER_URL", "http://env-worker")
    monkeypatch.setenv("JOBRELAY_FANOUT", "REDIS")
    monkeypatch.setenv("JOBRELAY_DATABASE_URL", "sqlite://" + str(tmp_path / "relay.db"))

    config = load_config(str(config_path))
    assert config.security.api_key == "env-key"
    assert config.security.shared_secret == "env-secret"
    assert config.worker.base_url == "http://env-worker"
    assert config.fanout.backend == "redis"
    assert config.database_url.endswith("relay.db")


def test_missing_file_gives_defaults(tmp_path, monkeypatch):
    for name in ("JOBRELAY_DATABASE_URL", "DATABASE_URL", "JOBRELAY_FANOUT", "JOBRELAY_RATE_LIMIT"):
        monkeypatch.delenv(name, raising=False)
    config = load_config(str(tmp_path / "absent.yaml"))
    assert config.database_url is None
    assert config.fanout.backend == "inmemory"
    assert config.security.token_ttl_hours == 24


def test_factories_follow_config(tmp_path, monkeypatch):
    monkeypatch.setenv("JOBRELAY_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("JOBRELAY_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("JOBRELAY_FANOUT", "redis")

    config = load_config()
    assert isinstance(get_fanout(config=config.fanout), RedisFanout)
    assert isinstance(get_repository(config=config), InMemoryRepository)

    repo = get_repository("sqlite://" + str(tmp_path / "relay.db"))
    assert isinstance(repo, SQLiteRepository)
    repo.close()
    with pytest.raises(ValueError):
        get_repository("postgresql://localhost/relay")
