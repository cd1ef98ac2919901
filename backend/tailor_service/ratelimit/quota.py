"""
Global Upstream Quota Tracker

Approximates the provider-side quota shared by every caller of a
designated model family (requests and tokens per minute/hour/day).

This is a heuristic safety net. The provider's real limit state is only
known authoritatively from its responses; our counters merely warn before
we get there and stop traffic once our own estimate says it is exhausted.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

from .config import RateLimitConfig, WindowLimits, MINUTE_MS, HOUR_MS, DAY_MS
from .counter import SlidingWindowCounter
from .limiter import Window, WindowUsage

logger = logging.getLogger(__name__)

_WINDOWS = (
    (Window.MINUTE, MINUTE_MS),
    (Window.HOUR, HOUR_MS),
    (Window.DAY, DAY_MS),
)


@dataclass
class GlobalLimitStatus:
    """Result of a global quota check. Only ``limit_hit`` may block a request."""

    approaching_limit: bool
    limit_hit: bool
    usage_percent: float
    window: Window
    retry_after: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["window"] = self.window.value
        return data


@dataclass
class UsageWindows:
    per_minute: WindowUsage
    per_hour: WindowUsage
    per_day: WindowUsage


@dataclass
class UsageStatus:
    requests: UsageWindows
    tokens: UsageWindows

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _neutral() -> GlobalLimitStatus:
    return GlobalLimitStatus(
        approaching_limit=False,
        limit_hit=False,
        usage_percent=0.0,
        window=Window.DAY,
    )


class GlobalQuotaTracker:
    """
    Tracks shared upstream usage keyed by model only.

    Caller identity plays no part here: every request for a tracked model
    draws from the same budget.
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

    def is_tracked(self, model_key: Optional[str]) -> bool:
        return self.config.is_global_model(model_key)

    def _evaluate(self, usage: int, limit: int, window: Window) -> Optional[GlobalLimitStatus]:
        usage_percent = (usage / limit) * 100 if limit else 100.0

        if usage >= limit:
            return GlobalLimitStatus(
                approaching_limit=True,
                limit_hit=True,
                usage_percent=100.0,
                # The real reset time is unknown; one minute is a deliberate guess
                retry_after=self.config.global_retry_after_sec,
                window=window,
            )

        if usage_percent >= self.config.global_warning_percent:
            return GlobalLimitStatus(
                approaching_limit=True,
                limit_hit=False,
                usage_percent=usage_percent,
                window=window,
            )

        return None

    def check_global_limits(self, model_key: str, estimated_tokens: int = 0) -> GlobalLimitStatus:
        """
        Record a request against the shared budget and report its state.

        Request windows are checked before token windows, each from the
        smallest window up; the first window at or above the warning
        threshold decides the result.

        Args:
            model_key: Target model
            estimated_tokens: Estimated token weight of the request

        Returns:
            GlobalLimitStatus
        """
        if not self.config.enabled or not self.is_tracked(model_key):
            return _neutral()

        self.counter.record(model_key, tokens=estimated_tokens)

        request_limits = self.config.get_global_request_limits().as_tuple()
        token_limits = self.config.get_global_token_limits().as_tuple()

        for (window, duration_ms), limit in zip(_WINDOWS, request_limits):
            used = self.counter.count_in_window(model_key, duration_ms)
            status = self._evaluate(used, limit, window)
            if status is not None:
                break
        else:
            status = None
            for (window, duration_ms), limit in zip(_WINDOWS, token_limits):
                used = self.counter.sum_tokens(model_key, duration_ms)
                status = self._evaluate(used, limit, window)
                if status is not None:
                    break

        if status is None:
            return _neutral()

        if status.limit_hit:
            logger.warning(
                f"Upstream quota for {model_key} exhausted ({status.window.value} window); "
                f"backing off {status.retry_after}s"
            )
        else:
            logger.warning(
                f"Upstream quota for {model_key} at {status.usage_percent:.1f}% "
                f"({status.window.value} window)"
            )

        return status

    def get_usage_status(self, model_key: str) -> UsageStatus:
        """Current shared usage per window, without recording."""
        self.counter.cleanup()

        def _windows(limits: WindowLimits, measure) -> UsageWindows:
            minute, hour, day = (
                WindowUsage(measure(duration_ms), limit)
                for (_, duration_ms), limit in zip(_WINDOWS, limits.as_tuple())
            )
            return UsageWindows(per_minute=minute, per_hour=hour, per_day=day)

        return UsageStatus(
            requests=_windows(
                self.config.get_global_request_limits(),
                lambda ms: self.counter.count_in_window(model_key, ms),
            ),
            tokens=_windows(
                self.config.get_global_token_limits(),
                lambda ms: self.counter.sum_tokens(model_key, ms),
            ),
        )

    def reset(self) -> None:
        self.counter.reset()


# Global tracker instance
_quota_tracker: Optional[GlobalQuotaTracker] = None


def get_quota_tracker() -> GlobalQuotaTracker:
    """
    Get the global upstream quota tracker instance.

    Returns:
        GlobalQuotaTracker instance
    """
    global _quota_tracker

    if _quota_tracker is None:
        from .config import load_rate_limit_config
        config = load_rate_limit_config()
        _quota_tracker = GlobalQuotaTracker(config)

    return _quota_tracker
