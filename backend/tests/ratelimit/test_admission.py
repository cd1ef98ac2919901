"""
Tests for the admission gate: identity, fingerprinting and the
limiter/tracker composition.
"""

import pytest
from unittest.mock import patch

from tailor_service.ratelimit.admission import RequestAdmissionGate
from tailor_service.ratelimit.config import RateLimitConfig
from tailor_service.ratelimit.counter import SlidingWindowCounter
from tailor_service.ratelimit.identity import extract_ip_address, hash_ip_address, estimate_tokens
from tailor_service.ratelimit.limiter import RateLimiter, LimitType
from tailor_service.ratelimit.metrics import get_metrics_collector
from tailor_service.ratelimit.quota import GlobalQuotaTracker
from tailor_service.observability.telemetry import TelemetryEventType

TRACKED = "groq:openai/gpt-oss-120b"
UNTRACKED = "groq:llama-3.1-8b"


@pytest.fixture
def gate(clean_rate_limit_env, clock):
    config = RateLimitConfig()
    return RequestAdmissionGate(
        limiter=RateLimiter(config, counter=SlidingWindowCounter(clock=clock)),
        quota_tracker=GlobalQuotaTracker(config, counter=SlidingWindowCounter(clock=clock)),
        ip_hash_salt="pepper",
    )


def test_extract_ip_prefers_first_forwarded_address():
    headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-IP": "10.0.0.2"}
    assert extract_ip_address(headers) == "203.0.113.7"


def test_extract_ip_header_priority():
    assert extract_ip_address({"x-real-ip": "10.0.0.2", "cf-connecting-ip": "10.0.0.3"}) == "10.0.0.2"
    assert extract_ip_address({"cf-connecting-ip": "10.0.0.3"}) == "10.0.0.3"


def test_extract_ip_falls_back_to_peer_then_unknown():
    assert extract_ip_address({}, client_host="127.0.0.1") == "127.0.0.1"
    assert extract_ip_address({}) == "unknown"


def test_fingerprint_is_salted_and_truncated():
    fingerprint = hash_ip_address("203.0.113.7", "pepper")
    assert len(fingerprint) == 16
    assert fingerprint != "203.0.113.7"
    assert fingerprint != hash_ip_address("203.0.113.7", "salt")
    assert hash_ip_address("unknown", "pepper") == "unknown"


def test_estimate_tokens():
    assert estimate_tokens("abcd" * 10) == 10
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("") == 0


def test_allowed_decision_carries_identity(gate):
    decision = gate.check({"x-forwarded-for": "203.0.113.7"}, "tailor-stream", UNTRACKED)

    assert decision.allowed is True
    assert decision.ip == "203.0.113.7"
    assert decision.fingerprint == hash_ip_address("203.0.113.7", "pepper")
    assert decision.global_status is None


def test_per_caller_denial(gate):
    headers = {"x-forwarded-for": "203.0.113.7"}
    for _ in range(5):
        assert gate.check(headers, "tailor-stream", UNTRACKED).allowed

    decision = gate.check(headers, "tailor-stream", UNTRACKED)
    assert decision.allowed is False
    assert decision.result.limit_type == LimitType.PER_IP
    assert decision.retry_after > 0


def test_global_denial_for_tracked_family(gate, clean_rate_limit_env):
    clean_rate_limit_env.setenv("UPSTREAM_GLOBAL_LIMIT_REQUESTS_PER_MINUTE", "3")

    # Different callers share the upstream budget
    for i in range(2):
        assert gate.check({"x-forwarded-for": f"10.0.0.{i}"}, "tailor-stream", TRACKED).allowed

    decision = gate.check({"x-forwarded-for": "10.0.0.9"}, "tailor-stream", TRACKED)
    assert decision.allowed is False
    assert decision.result.limit_type == LimitType.GLOBAL_UPSTREAM
    assert decision.retry_after == 60
    assert decision.result.current_count == 0
    assert decision.result.limit == 0


def test_per_caller_denial_skips_global_tracker(gate):
    headers = {"x-forwarded-for": "203.0.113.7"}
    for _ in range(6):
        gate.check(headers, "tailor-stream", TRACKED)

    # Only the five admitted requests reached the shared counter
    assert gate.quota_tracker.counter.total(TRACKED) == 5


def test_token_estimate_taken_from_body(gate):
    gate.check({}, "tailor-stream", TRACKED, body_text="x" * 400)
    assert gate.quota_tracker.counter.sum_tokens(TRACKED, 60_000) == 100


def test_approaching_limit_is_counted_not_denied(gate, clean_rate_limit_env):
    clean_rate_limit_env.setenv("UPSTREAM_GLOBAL_LIMIT_REQUESTS_PER_MINUTE", "5")
    for i in range(4):
        decision = gate.check({"x-forwarded-for": f"10.0.0.{i}"}, "tailor-stream", TRACKED)

    assert decision.allowed is True
    assert decision.global_status.approaching_limit is True
    collector = get_metrics_collector()
    assert collector.get_counter("upstream_quota_warnings_total", {"model": TRACKED, "window": "minute"}) == 1


def test_denials_recorded_in_metrics(gate):
    for _ in range(6):
        gate.check({"x-forwarded-for": "203.0.113.7"}, "tailor-stream", UNTRACKED)

    collector = get_metrics_collector()
    assert collector.get_counter("admission_allowed_total", {"endpoint": "tailor-stream"}) == 5
    assert collector.get_counter(
        "admission_denied_total",
        {"endpoint": "tailor-stream", "limit_type": "per_ip", "window": "minute"},
    ) == 1


def test_denial_logs_fingerprint_not_address(gate, caplog):
    headers = {"x-forwarded-for": "203.0.113.7"}
    with caplog.at_level("WARNING"):
        for _ in range(6):
            gate.check(headers, "tailor-stream", UNTRACKED)

    assert "203.0.113.7" not in caplog.text
    assert hash_ip_address("203.0.113.7", "pepper") in caplog.text


@patch("tailor_service.ratelimit.admission.emit_telemetry_event")
def test_record_denial_emits_event(mock_emit, gate, clean_rate_limit_env):
    clean_rate_limit_env.setenv("UPSTREAM_GLOBAL_LIMIT_REQUESTS_PER_MINUTE", "1")
    decision = gate.check({"x-forwarded-for": "203.0.113.7"}, "tailor-stream", TRACKED)

    gate.record_denial(decision, "tailor-stream", model_key=TRACKED, user_id="user-1")

    event_type, data = mock_emit.call_args.args
    assert event_type == TelemetryEventType.UPSTREAM_GLOBAL_LIMIT_HIT
    assert data["hashedIP"] == decision.fingerprint
    assert data["userId"] == "user-1"
    assert "203.0.113.7" not in str(data)


@patch("tailor_service.ratelimit.admission.emit_telemetry_event", side_effect=RuntimeError("sink down"))
def test_record_denial_swallows_telemetry_errors(mock_emit, gate):
    for _ in range(6):
        decision = gate.check({}, "tailor-stream", UNTRACKED)

    gate.record_denial(decision, "tailor-stream")
    assert mock_emit.called


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
