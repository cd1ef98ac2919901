"""
HTTP-level tests for the tailoring and rate limit endpoints.
"""

import asyncio
import pytest
from fastapi.testclient import TestClient

from tailor_service.main import app
from tailor_service.ratelimit.admission import RequestAdmissionGate, get_admission_gate
from tailor_service.ratelimit.config import RateLimitConfig
from tailor_service.ratelimit.counter import SlidingWindowCounter
from tailor_service.ratelimit.limiter import RateLimiter
from tailor_service.ratelimit.quota import GlobalQuotaTracker
from tailor_service.routers import tailor as tailor_router
from tailor_service.routers.tailor import get_pipeline
from tailor_service.store import TailoredResumeDraft, get_resume_store
from tailor_service.streaming.pipeline import TailoringPipeline

client = TestClient(app)


@pytest.fixture
def store(memory_store):
    return memory_store


@pytest.fixture(autouse=True)
def overrides(clean_rate_limit_env, clock, fake_tools, fake_generator, store):
    config = RateLimitConfig()
    gate = RequestAdmissionGate(
        limiter=RateLimiter(config, counter=SlidingWindowCounter(clock=clock)),
        quota_tracker=GlobalQuotaTracker(config, counter=SlidingWindowCounter(clock=clock)),
        ip_hash_salt="pepper",
    )
    pipeline = TailoringPipeline(fake_tools(), fake_generator(), store=store)

    app.dependency_overrides[get_admission_gate] = lambda: gate
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_resume_store] = lambda: store
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def body(resume_text, job_description_text):
    return {"resume": resume_text, "jobDescription": job_description_text, "userId": "user-1"}


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.parametrize("payload", [
    {"resume": "", "jobDescription": "JD"},
    {"resume": "Resume"},
    {},
])
def test_missing_input_is_rejected(payload):
    response = client.post("/api/v1/tailor/stream", json=payload)

    assert response.status_code == 400
    assert response.json() == {"error": "Missing resume or job description"}


def test_malformed_body_is_rejected():
    response = client.post(
        "/api/v1/tailor/stream",
        content="not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request body"


def test_stream_returns_sse_frames(body, sse_parser):
    response = client.post("/api/v1/tailor/stream", json=body)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"

    events = sse_parser(response.text)
    names = [event for event, _ in events]
    assert names[0] == "status"
    assert "section" in names
    assert names[-1] == "complete"

    complete = events[-1][1]
    assert complete["progress"] == 100
    assert complete["matchScore"] == 78
    assert complete["beforeScore"] == 55
    assert complete["resumeId"] is not None


def test_sixth_request_in_a_minute_gets_429(body):
    for _ in range(5):
        assert client.post("/api/v1/tailor/stream", json=body).status_code == 200

    response = client.post("/api/v1/tailor/stream", json=body)

    assert response.status_code == 429
    data = response.json()
    assert data["error"] == "Service temporarily busy"
    assert data["quotaExceeded"] is True
    assert data["retryAfter"] > 0
    assert response.headers["retry-after"] == str(data["retryAfter"])


def test_forwarded_callers_are_limited_separately(body):
    for _ in range(5):
        client.post("/api/v1/tailor/stream", json=body, headers={"X-Forwarded-For": "203.0.113.1"})

    blocked = client.post("/api/v1/tailor/stream", json=body, headers={"X-Forwarded-For": "203.0.113.1"})
    other = client.post("/api/v1/tailor/stream", json=body, headers={"X-Forwarded-For": "203.0.113.2"})

    assert blocked.status_code == 429
    assert other.status_code == 200


def test_rate_limit_status_includes_global_usage_for_tracked_model(body):
    client.post("/api/v1/tailor/stream", json=body)

    data = client.get("/api/v1/ratelimit/status").json()

    assert data["endpoint"] == "tailor-stream"
    assert data["limits"]["per_minute"] == {"current": 1, "limit": 5}
    assert len(data["fingerprint"]) == 16
    assert "global" in data


def test_rate_limit_status_untracked_model():
    data = client.get("/api/v1/ratelimit/status", params={"modelKey": "groq:llama-3.1-8b"}).json()

    assert data["modelKey"] == "groq:llama-3.1-8b"
    assert "global" not in data


def test_rate_limit_metrics_count_denials(body):
    for _ in range(6):
        client.post("/api/v1/tailor/stream", json=body)

    counters = client.get("/api/v1/ratelimit/metrics").json()["counters"]

    assert counters["admission_allowed_total:endpoint=tailor-stream"] == 5
    assert counters["admission_denied_total:endpoint=tailor-stream,limit_type=per_ip,window=minute"] == 1


def test_resume_versions(store):
    root_id = store.save_tailored_resume(TailoredResumeDraft(
        original_content="o", tailored_content="t1", job_description="jd", match_score={"after": 70},
    ))
    child_id = store.save_tailored_resume(TailoredResumeDraft(
        original_content="o", tailored_content="t2", job_description="jd",
        match_score={"after": 81}, parent_resume_id=root_id,
    ))

    response = client.get(f"/api/v1/tailor/resumes/{child_id}/versions")

    assert response.status_code == 200
    data = response.json()
    assert data["rootResumeId"] == root_id
    assert [v["version_number"] for v in data["versions"]] == [1, 2]
    assert [v["matchScore"] for v in data["versions"]] == [70, 81]


def test_resume_versions_unknown_id():
    response = client.get("/api/v1/tailor/resumes/missing/versions")
    assert response.status_code == 404


def test_cancel_running_pipelines():
    tailor_router._running.clear()

    async def _go():
        task = asyncio.create_task(asyncio.sleep(10))
        tailor_router._running.add(task)
        task.add_done_callback(tailor_router._running.discard)
        cancelled = await tailor_router.cancel_running_pipelines()
        return cancelled, task.cancelled()

    assert asyncio.run(_go()) == (1, True)
    assert not tailor_router._running


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
