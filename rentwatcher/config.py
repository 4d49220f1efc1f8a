"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from .errors import ConfigError

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class CrawlerConfig:
    """Tunable values for fetching, scheduling and distance filtering.

    Durations are stored in milliseconds to match the environment variables
    they are read from; the ``*_seconds`` properties convert them for
    ``time.sleep`` and ``requests``.
    """

    max_retries: int = 3
    retry_delay_ms: int = 2000
    max_backoff_ms: int = 30000
    fetch_timeout_ms: int = 30000
    max_concurrent: int = 3
    delay_between_requests_ms: int = 1000
    mrt_distance_threshold: int = 800
    walking_speed_m_per_min: int = 80
    notification_delay_ms: int = 1000
    user_agent: str = DEFAULT_USER_AGENT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "CrawlerConfig":
        env = os.environ if environ is None else environ
        defaults = cls()
        config = cls(
            max_retries=_env_int(env, "MAX_RETRIES", defaults.max_retries),
            retry_delay_ms=_env_int(env, "RETRY_DELAY", defaults.retry_delay_ms),
            max_backoff_ms=_env_int(env, "MAX_BACKOFF", defaults.max_backoff_ms),
            fetch_timeout_ms=_env_int(env, "REQUEST_TIMEOUT", defaults.fetch_timeout_ms),
            max_concurrent=_env_int(env, "MAX_CONCURRENT", defaults.max_concurrent),
            delay_between_requests_ms=_env_int(
                env, "DELAY_BETWEEN_REQUESTS", defaults.delay_between_requests_ms
            ),
            mrt_distance_threshold=_env_int(
                env, "MRT_DISTANCE_THRESHOLD", defaults.mrt_distance_threshold
            ),
            walking_speed_m_per_min=_env_int(
                env, "WALKING_SPEED_M_PER_MIN", defaults.walking_speed_m_per_min
            ),
            notification_delay_ms=_env_int(
                env, "NOTIFICATION_DELAY", defaults.notification_delay_ms
            ),
            user_agent=(env.get("USER_AGENT") or "").strip() or defaults.user_agent,
        )
        config.validate()
        return config

    def validate(self) -> None:
        errors = []
        if self.max_retries < 0:
            errors.append("MAX_RETRIES must be non-negative")
        if self.retry_delay_ms < 0:
            errors.append("RETRY_DELAY must be non-negative")
        if self.max_backoff_ms < self.retry_delay_ms:
            errors.append("MAX_BACKOFF must be at least RETRY_DELAY")
        if self.fetch_timeout_ms <= 0:
            errors.append("REQUEST_TIMEOUT must be positive")
        if self.max_concurrent <= 0:
            errors.append("MAX_CONCURRENT must be positive")
        if self.delay_between_requests_ms < 0:
            errors.append("DELAY_BETWEEN_REQUESTS must be non-negative")
        if self.mrt_distance_threshold <= 0:
            errors.append("MRT_DISTANCE_THRESHOLD must be positive")
        if self.walking_speed_m_per_min <= 0:
            errors.append("WALKING_SPEED_M_PER_MIN must be positive")
        if self.notification_delay_ms < 0:
            errors.append("NOTIFICATION_DELAY must be non-negative")
        if errors:
            raise ConfigError("Configuration validation failed: " + "; ".join(errors))

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000

    @property
    def max_backoff_seconds(self) -> float:
        return self.max_backoff_ms / 1000

    @property
    def fetch_timeout_seconds(self) -> float:
        return self.fetch_timeout_ms / 1000

    @property
    def notification_delay_seconds(self) -> float:
        return self.notification_delay_ms / 1000


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


__all__ = ["CrawlerConfig", "DEFAULT_USER_AGENT"]
