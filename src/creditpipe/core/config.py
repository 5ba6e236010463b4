"""
Configuration management for creditpipe.

Handles loading configuration from environment variables and validation.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Any

from creditpipe.core.exceptions import ConfigurationError


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {name} is not set")
    return value


def _get_env_int(name: str, default: int) -> int:
    raw = _get_env_var(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(
            f"Environment variable {name} must be an integer", {"value": raw}
        ) from None


def _get_env_float(name: str, default: float) -> float:
    raw = _get_env_var(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(
            f"Environment variable {name} must be a number", {"value": raw}
        ) from None


def _get_env_bool(name: str, default: bool) -> bool:
    raw = _get_env_var(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Config:
    """Pipeline configuration."""

    storage_backend: str = "memory"
    redis_url: str | None = None
    log_level: str = "INFO"
    log_json: bool = False  # one JSON object per log line
    env: str = "development"

    # Ledger
    starter_credits: int = 10  # opening balance of a standard account
    privileged_credits: int = 999999  # effectively unbounded
    job_cost: int = 1

    # Execution
    max_concurrent_jobs: int = 8

    # Account locks (seconds)
    lock_ttl: int = 30
    lock_retries: int = 50
    lock_retry_delay: float = 0.05

    # Durable store circuit breaker
    circuit_failure_threshold: int = 5
    circuit_recovery_timeout: int = 30

    def __post_init__(self) -> None:
        if self.starter_credits < 0:
            raise ConfigurationError("starter_credits must not be negative")
        if self.privileged_credits < 0:
            raise ConfigurationError("privileged_credits must not be negative")
        if self.job_cost <= 0:
            raise ConfigurationError("job_cost must be positive")
        if self.max_concurrent_jobs <= 0:
            raise ConfigurationError("max_concurrent_jobs must be positive")
        if self.lock_ttl <= 0:
            raise ConfigurationError("lock_ttl must be positive")
        if self.lock_retries < 0:
            raise ConfigurationError("lock_retries must not be negative")
        if self.circuit_failure_threshold <= 0:
            raise ConfigurationError("circuit_failure_threshold must be positive")

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables."""
        values: dict[str, Any] = {
            "storage_backend": _get_env_var("CREDITPIPE_STORAGE_BACKEND", default="memory"),
            "redis_url": _get_env_var("CREDITPIPE_REDIS_URL"),
            "log_level": _get_env_var("CREDITPIPE_LOG_LEVEL", default="INFO"),
            "log_json": _get_env_bool("CREDITPIPE_LOG_JSON", cls.log_json),
            "env": _get_env_var("CREDITPIPE_ENV", default="development"),
            "starter_credits": _get_env_int("CREDITPIPE_STARTER_CREDITS", cls.starter_credits),
            "privileged_credits": _get_env_int(
                "CREDITPIPE_PRIVILEGED_CREDITS", cls.privileged_credits
            ),
            "job_cost": _get_env_int("CREDITPIPE_JOB_COST", cls.job_cost),
            "max_concurrent_jobs": _get_env_int(
                "CREDITPIPE_MAX_CONCURRENT_JOBS", cls.max_concurrent_jobs
            ),
            "lock_ttl": _get_env_int("CREDITPIPE_LOCK_TTL", cls.lock_ttl),
            "lock_retries": _get_env_int("CREDITPIPE_LOCK_RETRIES", cls.lock_retries),
            "lock_retry_delay": _get_env_float(
                "CREDITPIPE_LOCK_RETRY_DELAY", cls.lock_retry_delay
            ),
            "circuit_failure_threshold": _get_env_int(
                "CREDITPIPE_CIRCUIT_FAILURE_THRESHOLD", cls.circuit_failure_threshold
            ),
            "circuit_recovery_timeout": _get_env_int(
                "CREDITPIPE_CIRCUIT_RECOVERY_TIMEOUT", cls.circuit_recovery_timeout
            ),
        }
        unknown = set(overrides) - set(values)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        current = asdict(self)
        current.update(updates)
        return Config(**current)

    def masked_redis_url(self) -> str | None:
        """Return the Redis URL with credentials masked for safe logging."""
        if not self.redis_url or "@" not in self.redis_url:
            return self.redis_url
        scheme, _, rest = self.redis_url.partition("://")
        return f"{scheme}://****@{rest.split('@', 1)[1]}"
