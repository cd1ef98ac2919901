"""
Shared test setup: keep the app off real infrastructure and reset
process-wide singletons between tests.
"""

import os
import json

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("TRACING_ENABLED", "false")

import pytest

from tailor_service.ratelimit import config as rl_config
from tailor_service.ratelimit import limiter as rl_limiter
from tailor_service.ratelimit import quota as rl_quota
from tailor_service.ratelimit import admission as rl_admission
from tailor_service.ratelimit import metrics as rl_metrics
from tailor_service.reliability import circuit_breaker
from tailor_service.llm.groq_client import GenerationResult


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float = 0, ms: int = 0):
        self.now_ms += int(seconds * 1000) + ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def reset_singletons():
    """Fresh limiter, tracker, gate, metrics and breakers for every test."""
    def _reset():
        rl_config._config = None
        rl_limiter._rate_limiter = None
        rl_quota._quota_tracker = None
        rl_admission._admission_gate = None
        rl_metrics._metrics_collector = None
        circuit_breaker._breakers.clear()

    _reset()
    yield
    _reset()


@pytest.fixture
def clean_rate_limit_env(monkeypatch):
    """Remove any rate limit overrides inherited from the environment."""
    for name in list(os.environ):
        if name.startswith(("RATE_LIMIT_", "UPSTREAM_GLOBAL_")):
            monkeypatch.delenv(name, raising=False)
    return monkeypatch


# Pipeline collaborators

LONG_RESUME = (
    "# Jane Doe\njane@example.com\n\n"
    "## Experience\nSenior Engineer at Acme Corp 2019-2024\n- Built data pipelines in Python\n"
    "- Led a team of four engineers\n\n"
    "## Skills\nPython, SQL, Docker\n\n"
    "## Education\nBSc Computer Science\n"
)
LONG_JOB_DESCRIPTION = (
    "We are hiring a Senior Backend Engineer to design distributed systems with Python, "
    "Kubernetes and PostgreSQL. You will own services end to end, mentor engineers and "
    "improve observability across the platform."
)
TAILORED_RESUME = (
    "# Jane Doe\njane@example.com\n\n"
    "## Summary\nBackend engineer focused on Python and Kubernetes.\n\n"
    "## Experience\nSenior Engineer at Acme Corp 2019-2024\n"
    "- Built Python data pipelines processing 2M events per day\n\n"
    "## Skills\nPython, Kubernetes, PostgreSQL, SQL, Docker\n"
)


class FakeToolClient:
    """Stand-in for ToolClient; ``failing`` names the methods that raise."""

    def __init__(self, failing=(), responses=None):
        self.failing = set(failing)
        self.calls = []
        self.responses = {
            "extract_keywords": {
                "keywords": {
                    "technical": [
                        {"term": "Kubernetes", "importance": "high", "frequency": 2},
                        {"term": "PostgreSQL", "importance": "medium", "frequency": 1},
                        {"term": "Python", "importance": "critical", "frequency": 3},
                    ],
                    "industry": [],
                },
                "criticalKeywords": ["Kubernetes"],
                "keywordDensity": {},
            },
            "parse_resume": {"sections": ["Experience"], "experience": [], "education": [], "skills": {}},
            "research_company": {
                "companyName": "Acme",
                "jobTitle": "Senior Backend Engineer",
                "companyInfo": {"industry": "Software"},
            },
            "metrics_context": {"suggestions": ["latency"]},
            "score_relevancy": {"before": 55, "after": 78},
            "validate_resume": {"isValid": True, "issues": []},
            "recommend_format": {"template": "modern"},
        }
        self.responses.update(responses or {})

    async def _respond(self, name, *args, **kwargs):
        self.calls.append(name)
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")
        return self.responses[name]

    async def extract_keywords(self, job_description, resume):
        return await self._respond("extract_keywords")

    async def parse_resume(self, resume):
        return await self._respond("parse_resume")

    async def research_company(self, job_description):
        return await self._respond("research_company")

    async def metrics_context(self, job_description):
        return await self._respond("metrics_context")

    async def score_relevancy(self, original_resume, tailored_resume, job_description, keywords=None, cache_key=None):
        return await self._respond("score_relevancy")

    async def validate_resume(self, original_resume, tailored_resume, cache_key=None):
        return await self._respond("validate_resume")

    async def recommend_format(self, job_description, industry, job_title, tailored_resume):
        return await self._respond("recommend_format")


class FakeGenerator:
    """Returns a fixed completion, raises ``error``, or runs ``on_call`` first."""

    def __init__(self, text=None, error=None, on_call=None):
        self.text = text if text is not None else json.dumps({
            "tailoredResume": TAILORED_RESUME,
            "improvementMetrics": {
                "quantifiedBulletsAdded": 1,
                "atsKeywordsMatched": 2,
                "activeVoiceConversions": 0,
                "sectionsOptimized": 3,
            },
        })
        self.error = error
        self.on_call = on_call
        self.prompts = []

    async def generate(self, prompt, model_key=None, options=None):
        self.prompts.append(prompt)
        if self.on_call is not None:
            self.on_call()
        if self.error is not None:
            raise self.error
        return GenerationResult(text=self.text, usage={"total_tokens": 10}, model=model_key)


class FailingStore:
    def __init__(self):
        self.attempts = 0

    def save_tailored_resume(self, draft):
        self.attempts += 1
        raise RuntimeError("database unavailable")


@pytest.fixture
def fake_tools():
    return FakeToolClient


@pytest.fixture
def fake_generator():
    return FakeGenerator


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture
def resume_text():
    return LONG_RESUME


@pytest.fixture
def job_description_text():
    return LONG_JOB_DESCRIPTION


def parse_sse(frames):
    """Split raw SSE text into (event, data) pairs."""
    if isinstance(frames, str):
        frames = [f for f in frames.split("\n\n") if f.strip()]
    parsed = []
    for frame in frames:
        lines = frame.strip().split("\n")
        event = lines[0][len("event: "):]
        data = json.loads(lines[1][len("data: "):])
        parsed.append((event, data))
    return parsed


@pytest.fixture
def sse_parser():
    return parse_sse


@pytest.fixture
def memory_store():
    """ResumeStore over a fresh in-memory database."""
    from sqlalchemy.orm import sessionmaker
    from tailor_service.database import build_engine, init_db
    from tailor_service.store import ResumeStore

    engine = build_engine("sqlite:///:memory:")
    init_db(bind=engine)
    yield ResumeStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    engine.dispose()
