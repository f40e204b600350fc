"""Process settings loaded from environment variables.

Recognized env vars:
- LOG_LEVEL (default: INFO)
- WEBHOOK_RETRY_POLICY_MAX_RETRIES (default: 3)
- WEBHOOK_RETRY_POLICY_RETRY_INTERVAL, milliseconds (default: 5000)
- WEBHOOK_RETRY_POLICY_BACKOFF_FACTOR (default: 3)
- WEBHOOK_HTTP_TIMEOUT, seconds per attempt (default: 30)
- IGNORE_GROUP_MESSAGES, IGNORE_STATUS_MESSAGES, IGNORE_BROADCAST_MESSAGES,
  IGNORE_NEWSLETTER_MESSAGES, IGNORE_BOT_MESSAGES, IGNORE_META_AI_MESSAGES
  ("true"/"false", default: true)
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field


class ConfigError(RuntimeError):
    """Raised when an environment variable holds an invalid value."""

    pass


@dataclass(frozen=True)
class RetryPolicy:
    """Webhook retry policy. Immutable, loaded once per process."""

    max_retries: int = 3
    retry_interval_ms: int = 5000
    backoff_factor: float = 3

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_interval_ms <= 0:
            raise ValueError("retry_interval_ms must be > 0")
        if self.backoff_factor <= 0:
            raise ValueError("backoff_factor must be > 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_ms(self, retry_index: int) -> float:
        """Delay before the retry with zero-based index ``retry_index``, jitter excluded."""
        return self.retry_interval_ms * self.backoff_factor**retry_index


@dataclass(frozen=True)
class IgnoreRules:
    """Routing-identifier categories whose traffic never reaches the webhook."""

    groups: bool = True
    status: bool = True
    broadcasts: bool = True
    newsletters: bool = True
    bots: bool = True
    meta_ai: bool = True


@dataclass(frozen=True)
class Settings:
    log_level: str = "INFO"
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    webhook_timeout: float = 30.0
    ignore: IgnoreRules = field(default_factory=IgnoreRules)

    def as_public_dict(self) -> dict:
        return asdict(self)


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    raise ConfigError(f"{name} must be true or false, got {raw!r}")


def _get_number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build settings from ``env`` (defaults to ``os.environ``).

    Raises:
        ConfigError: If a variable is present but malformed or out of range.
    """
    env = os.environ if env is None else env

    try:
        retry_policy = RetryPolicy(
            max_retries=_get_number(env, "WEBHOOK_RETRY_POLICY_MAX_RETRIES", 3, int),
            retry_interval_ms=_get_number(env, "WEBHOOK_RETRY_POLICY_RETRY_INTERVAL", 5000, int),
            backoff_factor=_get_number(env, "WEBHOOK_RETRY_POLICY_BACKOFF_FACTOR", 3.0, float),
        )
    except ValueError as e:
        raise ConfigError(f"Invalid webhook retry policy: {e}") from e

    timeout = _get_number(env, "WEBHOOK_HTTP_TIMEOUT", 30.0, float)
    if timeout <= 0:
        raise ConfigError("WEBHOOK_HTTP_TIMEOUT must be > 0")

    ignore = IgnoreRules(
        groups=_get_bool(env, "IGNORE_GROUP_MESSAGES", True),
        status=_get_bool(env, "IGNORE_STATUS_MESSAGES", True),
        broadcasts=_get_bool(env, "IGNORE_BROADCAST_MESSAGES", True),
        newsletters=_get_bool(env, "IGNORE_NEWSLETTER_MESSAGES", True),
        bots=_get_bool(env, "IGNORE_BOT_MESSAGES", True),
        meta_ai=_get_bool(env, "IGNORE_META_AI_MESSAGES", True),
    )

    log_level = (env.get("LOG_LEVEL") or "INFO").strip().upper()
    if log_level not in logging.getLevelNamesMapping():
        raise ConfigError(f"LOG_LEVEL must be a logging level name, got {log_level!r}")

    return Settings(
        log_level=log_level,
        retry_policy=retry_policy,
        webhook_timeout=timeout,
        ignore=ignore,
    )
