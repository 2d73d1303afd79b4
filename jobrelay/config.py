from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import (
    API_KEY_TTL_DAYS,
    COMMAND_MIN_INTERVAL_SECONDS,
    HEARTBEAT_INTERVAL_SECONDS,
    PROCESS_TOKEN_TTL_HOURS,
    SIGNATURE_FRESHNESS_SECONDS,
)


class RedisConfig(BaseModel):
    """Configuration for Redis-backed fan-out and rate limiting."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class WorkerConfig(BaseModel):
    """Where the external automation worker listens."""

    base_url: str = "http://localhost:8001"
    timeout: float = 10.0


class SecurityConfig(BaseModel):
    """Shared secrets and credential lifetimes."""

    api_key: str = ""
    shared_secret: str = ""
    session_secret: str = ""
    session_algorithm: str = "HS256"
    token_ttl_hours: int = PROCESS_TOKEN_TTL_HOURS
    freshness_window_seconds: int = SIGNATURE_FRESHNESS_SECONDS
    api_key_ttl_days: int = API_KEY_TTL_DAYS


class FanoutConfig(BaseModel):
    """Fan-out settings for live client streams."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS
    redis: RedisConfig = RedisConfig()


class RateLimitConfig(BaseModel):
    backend: Literal["inmemory", "redis"] = "inmemory"
    min_interval_seconds: float = COMMAND_MIN_INTERVAL_SECONDS
    redis: RedisConfig = RedisConfig()


class JobRelayConfig(BaseModel):
    """Top-level configuration model."""

    worker: WorkerConfig = WorkerConfig()
    security: SecurityConfig = SecurityConfig()
    fanout: FanoutConfig = FanoutConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> JobRelayConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to JOBRELAY_CONFIG env
            variable or 'config.yaml' in the current directory.

    Secrets and endpoints can be overridden from the environment so that
    they never have to live in the YAML file.
    """

    config_path = path or os.getenv("JOBRELAY_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = JobRelayConfig(**data)
    else:
        config = JobRelayConfig()

    env_db_url = os.getenv("JOBRELAY_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url

    security = config.security
    security.api_key = os.getenv("JOBRELAY_API_KEY", security.api_key)
    security.shared_secret = os.getenv("JOBRELAY_SHARED_SECRET", security.shared_secret)
    security.session_secret = os.getenv("JOBRELAY_SESSION_SECRET", security.session_secret)

    worker_url = os.getenv("JOBRELAY_WORKER_URL")
    if worker_url:
        config.worker.base_url = worker_url

    fanout_backend = os.getenv("JOBRELAY_FANOUT")
    if fanout_backend:
        config.fanout.backend = fanout_backend.lower()  # type: ignore[assignment]
    rate_limit_backend = os.getenv("JOBRELAY_RATE_LIMIT")
    if rate_limit_backend:
        config.rate_limit.backend = rate_limit_backend.lower()  # type: ignore[assignment]
    return config
