"""
Rate Limiting Configuration Module

Loads rate limiting and upstream quota configuration from environment
variables with sensible defaults.

Per-model ceilings are read at call time so that operators (and tests) can
change them without restarting the process. A malformed value never raises:
it falls back to the next configuration level and finally to the built-in
default.
"""

import os
import re
import logging
from typing import Optional, Tuple
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

# Built-in per-caller defaults
DEFAULT_PER_MINUTE = 5
DEFAULT_PER_HOUR = 30
DEFAULT_PER_DAY = 200

# Built-in upstream (shared) defaults
DEFAULT_GLOBAL_REQUESTS = (30, 900, 14400)
DEFAULT_GLOBAL_TOKENS = (64000, 1000000, 1000000)


@dataclass
class WindowLimits:
    """Ceilings for the minute, hour and day windows."""

    per_minute: int
    per_hour: int
    per_day: int

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.per_minute, self.per_hour, self.per_day)


def _parse_positive_int(raw: Optional[str]) -> Optional[int]:
    """Parse an env value, returning None for anything unusable."""
    if raw is None:
        return None
    try:
        value = int(raw.strip())
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric rate limit value: {raw!r}")
        return None
    if value <= 0:
        logger.warning(f"Ignoring non-positive rate limit value: {raw!r}")
        return None
    return value


def _env_int(*names: str, default: int) -> int:
    """Return the first usable positive integer among ``names``."""
    for name in names:
        if not name:
            continue
        value = _parse_positive_int(os.getenv(name))
        if value is not None:
            return value
    return default


def model_env_key(model_key: str) -> str:
    """Normalise a model key for use in an environment variable name."""
    return re.sub(r"[:.\-/]", "_", model_key).upper()


@dataclass
class RateLimitConfig:
    """Configuration for per-caller rate limiting and upstream quota tracking."""

    enabled: bool = True

    # Counter housekeeping
    cleanup_interval_ms: int = 5 * MINUTE_MS
    retention_ms: int = DAY_MS

    # Model keys containing any of these markers share an upstream quota
    global_model_markers: Tuple[str, ...] = field(default_factory=lambda: ("cerebras", "gpt-oss"))

    # Conservative wait reported when the upstream quota is exhausted
    global_retry_after_sec: int = 60
    global_warning_percent: float = 80.0

    @classmethod
    def from_env(cls) -> "RateLimitConfig":
        """Load configuration from environment variables."""
        markers = os.getenv("UPSTREAM_GLOBAL_MODEL_MARKERS", "cerebras,gpt-oss")
        return cls(
            enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true",
            cleanup_interval_ms=_env_int("RATE_LIMIT_CLEANUP_INTERVAL_MS", default=5 * MINUTE_MS),
            global_model_markers=tuple(m.strip().lower() for m in markers.split(",") if m.strip()),
            global_retry_after_sec=_env_int("UPSTREAM_GLOBAL_RETRY_AFTER_SEC", default=60),
        )

    def get_limits(self, model_key: Optional[str] = None) -> WindowLimits:
        """
        Resolve per-caller ceilings for a model.

        Lookup order for each window: model override, global override,
        built-in default. Each window is resolved independently.
        """
        prefix = f"RATE_LIMIT_MODEL_{model_env_key(model_key)}" if model_key else ""
        return WindowLimits(
            per_minute=_env_int(
                f"{prefix}_PER_MINUTE" if prefix else "",
                "RATE_LIMIT_REQUESTS_PER_MINUTE",
                default=DEFAULT_PER_MINUTE,
            ),
            per_hour=_env_int(
                f"{prefix}_PER_HOUR" if prefix else "",
                "RATE_LIMIT_REQUESTS_PER_HOUR",
                default=DEFAULT_PER_HOUR,
            ),
            per_day=_env_int(
                f"{prefix}_PER_DAY" if prefix else "",
                "RATE_LIMIT_REQUESTS_PER_DAY",
                default=DEFAULT_PER_DAY,
            ),
        )

    def get_global_request_limits(self) -> WindowLimits:
        """Upstream request ceilings shared by every caller."""
        minute, hour, day = DEFAULT_GLOBAL_REQUESTS
        return WindowLimits(
            per_minute=_env_int("UPSTREAM_GLOBAL_LIMIT_REQUESTS_PER_MINUTE", default=minute),
            per_hour=_env_int("UPSTREAM_GLOBAL_LIMIT_REQUESTS_PER_HOUR", default=hour),
            per_day=_env_int("UPSTREAM_GLOBAL_LIMIT_REQUESTS_PER_DAY", default=day),
        )

    def get_global_token_limits(self) -> WindowLimits:
        """Upstream token ceilings shared by every caller."""
        minute, hour, day = DEFAULT_GLOBAL_TOKENS
        return WindowLimits(
            per_minute=_env_int("UPSTREAM_GLOBAL_LIMIT_TOKENS_PER_MINUTE", default=minute),
            per_hour=_env_int("UPSTREAM_GLOBAL_LIMIT_TOKENS_PER_HOUR", default=hour),
            per_day=_env_int("UPSTREAM_GLOBAL_LIMIT_TOKENS_PER_DAY", default=day),
        )

    def is_global_model(self, model_key: Optional[str]) -> bool:
        """Whether a model belongs to the family with a shared upstream quota."""
        if not model_key:
            return False
        lowered = model_key.lower()
        return any(marker in lowered for marker in self.global_model_markers)

    def validate(self) -> None:
        """Validate configuration values."""
        if self.cleanup_interval_ms <= 0:
            raise ValueError("cleanup_interval_ms must be positive")

        if not 0 < self.global_warning_percent <= 100:
            raise ValueError("global_warning_percent must be in (0, 100]")


# Global configuration instance
_config: Optional[RateLimitConfig] = None


def load_rate_limit_config() -> RateLimitConfig:
    """
    Load and return the global rate limit configuration.

    Returns:
        RateLimitConfig instance loaded from environment variables
    """
    global _config

    if _config is None:
        _config = RateLimitConfig.from_env()
        _config.validate()

    return _config


def reload_config() -> RateLimitConfig:
    """
    Force reload configuration from environment variables.
    Useful for testing or dynamic reconfiguration.
    """
    global _config
    _config = RateLimitConfig.from_env()
    _config.validate()
    return _config
