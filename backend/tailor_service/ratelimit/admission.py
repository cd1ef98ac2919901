"""
Request Admission Gate

Single allow/deny decision for inbound requests, combining:
1. Per-caller rate limiting (cheap, local, always checked first)
2. Shared upstream quota tracking (only for the designated model family)

Denials are reported to telemetry in the background; telemetry problems
never affect the decision or the response.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Mapping, Dict, Any

from tailor_service.observability.tracing import get_tracer, trace_span, add_span_attributes
from tailor_service.observability.telemetry import TelemetryEventType, emit_telemetry_event
from .limiter import RateLimiter, RateLimitResult, LimitType, get_rate_limiter
from .quota import GlobalQuotaTracker, GlobalLimitStatus, get_quota_tracker
from .identity import extract_ip_address, hash_ip_address, estimate_tokens
from .metrics import record_admission, record_upstream_warning

logger = logging.getLogger(__name__)
tracer = get_tracer("ratelimit.admission")


@dataclass
class AdmissionDecision:
    """Admission result plus the caller's identity."""

    result: RateLimitResult
    ip: str
    fingerprint: str
    global_status: Optional[GlobalLimitStatus] = None

    @property
    def allowed(self) -> bool:
        return self.result.allowed

    @property
    def retry_after(self) -> Optional[int]:
        return self.result.retry_after


class RequestAdmissionGate:
    """Composes the rate limiter and the upstream quota tracker."""

    def __init__(
        self,
        limiter: RateLimiter,
        quota_tracker: GlobalQuotaTracker,
        ip_hash_salt: str = "default-salt",
    ):
        self.limiter = limiter
        self.quota_tracker = quota_tracker
        self.ip_hash_salt = ip_hash_salt

    def check(
        self,
        headers: Mapping[str, str],
        endpoint: str,
        model_key: Optional[str] = None,
        estimated_tokens: Optional[int] = None,
        client_host: Optional[str] = None,
        body_text: Optional[str] = None,
    ) -> AdmissionDecision:
        """
        Decide whether a request may proceed.

        Args:
            headers: Inbound request headers
            endpoint: Logical endpoint name
            model_key: Target model (optional)
            estimated_tokens: Token estimate; derived from ``body_text`` if omitted
            client_host: Transport peer address, used when no proxy header is set
            body_text: Raw request payload used for token estimation

        Returns:
            AdmissionDecision (short-circuits on the first denial)
        """
        ip = extract_ip_address(headers, client_host)
        fingerprint = hash_ip_address(ip, self.ip_hash_salt)

        tokens = estimated_tokens
        if not tokens and body_text:
            tokens = estimate_tokens(body_text)

        with trace_span(tracer, "ratelimit.admission") as span:
            add_span_attributes(span, {
                "ratelimit.endpoint": endpoint,
                "ratelimit.model": model_key or "default",
                "ratelimit.fingerprint": fingerprint,
                "ratelimit.tokens_estimate": tokens or 0,
            })

            result = self.limiter.check_rate_limit(ip, endpoint, model_key, tokens)
            decision = AdmissionDecision(result=result, ip=ip, fingerprint=fingerprint)

            if result.allowed and self.quota_tracker.is_tracked(model_key):
                status = self.quota_tracker.check_global_limits(model_key, tokens or 0)
                decision.global_status = status

                if status.limit_hit:
                    decision.result = RateLimitResult(
                        allowed=False,
                        retry_after=status.retry_after or 60,
                        limit_type=LimitType.GLOBAL_UPSTREAM,
                        current_count=0,
                        limit=0,
                        window=status.window,
                    )
                elif status.approaching_limit:
                    record_upstream_warning(model_key, status.window.value, status.usage_percent)

            add_span_attributes(span, {
                "ratelimit.allowed": decision.allowed,
                "ratelimit.limit_type": decision.result.limit_type.value,
                "ratelimit.window": decision.result.window.value,
            })

        record_admission(
            endpoint,
            decision.allowed,
            decision.result.limit_type.value,
            decision.result.window.value,
        )

        if not decision.allowed:
            logger.warning(
                f"Admission denied on {endpoint} for {fingerprint}: "
                f"{decision.result.limit_type.value} {decision.result.window.value} limit, "
                f"retry after {decision.result.retry_after}s"
            )

        return decision

    def record_denial(
        self,
        decision: AdmissionDecision,
        endpoint: str,
        model_key: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        """Report a denial to telemetry without waiting for delivery."""
        result = decision.result
        event_type = (
            TelemetryEventType.UPSTREAM_GLOBAL_LIMIT_HIT
            if result.limit_type == LimitType.GLOBAL_UPSTREAM
            else TelemetryEventType.MODEL_RATE_LIMIT_HIT
        )
        data: Dict[str, Any] = {
            "endpoint": endpoint,
            "modelKey": model_key or "unknown",
            "limitType": result.limit_type.value,
            "retryAfter": result.retry_after or 0,
            "hashedIP": decision.fingerprint,
            "userId": user_id or "anonymous",
            "window": result.window.value,
            "currentCount": result.current_count,
            "limit": result.limit,
        }

        try:
            emit_telemetry_event(event_type, data, path=f"/api/{endpoint}")
        except Exception as e:
            logger.error(f"Failed to track rate limit hit: {e}")


# Global gate instance
_admission_gate: Optional[RequestAdmissionGate] = None


def get_admission_gate() -> RequestAdmissionGate:
    """
    Get the global admission gate.

    Returns:
        RequestAdmissionGate instance
    """
    global _admission_gate

    if _admission_gate is None:
        from tailor_service.config import settings
        _admission_gate = RequestAdmissionGate(
            limiter=get_rate_limiter(),
            quota_tracker=get_quota_tracker(),
            ip_hash_salt=settings.IP_HASH_SALT,
        )

    return _admission_gate
