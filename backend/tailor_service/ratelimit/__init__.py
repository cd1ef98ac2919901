"""
Rate Limiting & Quota Tracking

Admission control for the tailoring endpoints:
- Sliding-window counters over minute/hour/day windows
- Per-caller rate limiting keyed by address, endpoint and model
- Shared upstream quota tracking for the designated model family
- A single admission gate combining both
"""

from .config import load_rate_limit_config, RateLimitConfig
from .counter import SlidingWindowCounter, WindowSpec
from .limiter import RateLimiter, RateLimitResult, LimitType, Window, get_rate_limiter
from .quota import GlobalQuotaTracker, GlobalLimitStatus, get_quota_tracker
from .admission import RequestAdmissionGate, AdmissionDecision, get_admission_gate

__all__ = [
    "load_rate_limit_config",
    "RateLimitConfig",
    "SlidingWindowCounter",
    "WindowSpec",
    "RateLimiter",
    "RateLimitResult",
    "LimitType",
    "Window",
    "get_rate_limiter",
    "GlobalQuotaTracker",
    "GlobalLimitStatus",
    "get_quota_tracker",
    "RequestAdmissionGate",
    "AdmissionDecision",
    "get_admission_gate",
]
