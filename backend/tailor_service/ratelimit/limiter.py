"""
Per-Caller Rate Limiter

Throttles callers keyed by ``(ip, endpoint, model)`` over minute, hour and
day windows. Ceilings are stricter than the upstream provider's global
limits so that no single caller can exhaust the shared quota.
"""

import logging
from enum import Enum
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any, List

from .config import (
    RateLimitConfig,
    MINUTE_MS,
    HOUR_MS,
    DAY_MS,
    DEFAULT_PER_MINUTE,
    DEFAULT_PER_HOUR,
    DEFAULT_PER_DAY,
)
from .counter import SlidingWindowCounter, WindowSpec

logger = logging.getLogger(__name__)


class LimitType(str, Enum):
    PER_IP = "per_ip"
    GLOBAL_UPSTREAM = "global_upstream"


class Window(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"


@dataclass
class RateLimitResult:
    """Outcome of a single admission check. Never persisted."""

    allowed: bool
    limit_type: LimitType
    current_count: int
    limit: int
    window: Window
    retry_after: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["limit_type"] = self.limit_type.value
        data["window"] = self.window.value
        return data


@dataclass
class WindowUsage:
    current: int
    limit: int


@dataclass
class RateLimitStatus:
    per_minute: WindowUsage
    per_hour: WindowUsage
    per_day: WindowUsage

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_windows(per_minute: int, per_hour: int, per_day: int) -> List[WindowSpec]:
    """Window specs in evaluation order (smallest first)."""
    return [
        WindowSpec(Window.MINUTE.value, MINUTE_MS, per_minute),
        WindowSpec(Window.HOUR.value, HOUR_MS, per_hour),
        WindowSpec(Window.DAY.value, DAY_MS, per_day),
    ]


class RateLimiter:
    """
    Sliding-window rate limiter for inbound callers.

    Every attempt is recorded, including denied ones, so that a caller who
    keeps hammering the endpoint does not reset their own window.
    """

    def __init__(self, config: RateLimitConfig, counter: Optional[SlidingWindowCounter] = None):
        """
        Args:
            config: RateLimitConfig instance
            counter: Counter to use; a fresh in-memory counter by default
        """
        self.config = config
        self.counter = counter or SlidingWindowCounter(
            cleanup_interval_ms=config.cleanup_interval_ms,
            retention_ms=config.retention_ms,
        )

    @staticmethod
    def store_key(ip: str, endpoint: str, model_key: Optional[str] = None) -> str:
        return f"{ip}:{endpoint}:{model_key or 'default'}"

    def _windows_for(self, model_key: Optional[str]) -> List[WindowSpec]:
        try:
            limits = self.config.get_limits(model_key)
            return build_windows(limits.per_minute, limits.per_hour, limits.per_day)
        except Exception as e:
            # The request path must never fail because of configuration
            logger.error(f"Falling back to default rate limits: {e}")
            return build_windows(DEFAULT_PER_MINUTE, DEFAULT_PER_HOUR, DEFAULT_PER_DAY)

    def check_rate_limit(
        self,
        ip: str,
        endpoint: str,
        model_key: Optional[str] = None,
        estimated_tokens: Optional[int] = None,
    ) -> RateLimitResult:
        """
        Record an attempt and decide whether it is allowed.

        Args:
            ip: Caller network address
            endpoint: Logical endpoint name
            model_key: Target model (optional)
            estimated_tokens: Token weight stored alongside the request

        Returns:
            RateLimitResult; when denied, ``window`` is the smallest window
            whose ceiling was exceeded and ``retry_after`` is the number of
            seconds until its oldest request expires.
        """
        windows = self._windows_for(model_key)

        if not self.config.enabled:
            return RateLimitResult(
                allowed=True,
                limit_type=LimitType.PER_IP,
                current_count=0,
                limit=windows[-1].limit,
                window=Window.DAY,
            )

        key = self.store_key(ip, endpoint, model_key)
        counts = self.counter.record_and_count(key, windows, tokens=estimated_tokens)
        exceeded = self.counter.first_exceeded(counts)

        if exceeded is not None:
            logger.info(
                f"Rate limit exceeded on {endpoint} ({model_key or 'default'}): "
                f"{exceeded.count}/{exceeded.limit} per {exceeded.name}, retry in {exceeded.retry_after}s"
            )
            return RateLimitResult(
                allowed=False,
                retry_after=exceeded.retry_after,
                limit_type=LimitType.PER_IP,
                current_count=exceeded.count,
                limit=exceeded.limit,
                window=Window(exceeded.name),
            )

        return RateLimitResult(
            allowed=True,
            limit_type=LimitType.PER_IP,
            current_count=self.counter.total(key),
            limit=windows[-1].limit,
            window=Window.DAY,
        )

    def get_rate_limit_status(
        self,
        ip: str,
        endpoint: str,
        model_key: Optional[str] = None,
    ) -> RateLimitStatus:
        """Current per-window usage for a caller, without recording."""
        self.counter.cleanup()
        windows = self._windows_for(model_key)
        counts = self.counter.count(self.store_key(ip, endpoint, model_key), windows)
        minute, hour, day = counts

        return RateLimitStatus(
            per_minute=WindowUsage(minute.count, minute.limit),
            per_hour=WindowUsage(hour.count, hour.limit),
            per_day=WindowUsage(day.count, day.limit),
        )

    def reset(self) -> None:
        self.counter.reset()


# Global rate limiter instance
_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """
    Get the global rate limiter instance.

    Returns:
        RateLimiter instance
    """
    global _rate_limiter

    if _rate_limiter is None:
        from .config import load_rate_limit_config
        config = load_rate_limit_config()
        _rate_limiter = RateLimiter(config)

    return _rate_limiter
