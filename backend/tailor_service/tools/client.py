"""
Enrichment Tool Client

JSON-over-HTTP client for the deterministic enrichment tools used around
generation (keyword extraction, resume parsing, company research, metrics
context, relevancy scoring, validation, format recommendation).

Every call either returns the tool's decoded JSON or raises ToolCallError;
falling back to defaults is the caller's decision.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from tailor_service.reliability.retry import call_with_backoff
from .cache import ToolResultCache

logger = logging.getLogger(__name__)

KEYWORD_EXTRACTOR = "/api/mcp-tools/keyword-extractor"
RESUME_PARSER = "/api/mcp-tools/resume-parser"
COMPANY_RESEARCH = "/api/mcp-tools/company-research"
METRICS_CONTEXT = "/api/mcp-tools/metrics-context"
RELEVANCY_SCORER = "/api/mcp-tools/relevancy-scorer"
RESUME_VALIDATOR = "/api/mcp-tools/resume-validator"
FORMAT_RECOMMENDER = "/api/mcp-tools/format-recommender"


class ToolCallError(Exception):
    """Raised when a tool call fails or returns an unusable response."""

    def __init__(self, path: str, message: str, status: Optional[int] = None):
        super().__init__(f"Tool {path} failed: {message}")
        self.path = path
        self.status = status


class ToolClient:
    """Calls enrichment tools hosted under a common base URL."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 20.0,
        max_attempts: int = 1,
        cache: Optional[ToolResultCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Root URL of the tool host
            timeout: Per-request timeout in seconds
            max_attempts: Attempts per call for transport-level failures
            cache: Result cache used when a call passes ``cache_key``
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.cache = cache if cache is not None else ToolResultCache()
        self._transport = transport

    async def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(f"{self.base_url}{path}", json=payload)

        if response.status_code >= 400:
            raise ToolCallError(path, f"HTTP {response.status_code}", status=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise ToolCallError(path, f"invalid JSON response: {e}") from e

    async def call(self, path: str, payload: Dict[str, Any], cache_key: Optional[str] = None) -> Any:
        """
        POST ``payload`` to a tool and return its JSON body.

        Raises:
            ToolCallError: On HTTP errors, transport errors or undecodable bodies
        """
        if cache_key:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Tool cache hit for {path}")
                return cached

        try:
            data = await call_with_backoff(
                self._post,
                path,
                payload,
                max_attempts=self.max_attempts,
                initial_delay=0.25,
                max_delay=2.0,
                retry_on=[httpx.TransportError],
            )
        except httpx.HTTPError as e:
            raise ToolCallError(path, str(e) or type(e).__name__) from e

        if cache_key:
            self.cache.set(cache_key, data)

        return data

    async def extract_keywords(self, job_description: str, resume: str) -> Any:
        return await self.call(KEYWORD_EXTRACTOR, {"jobDescription": job_description, "resume": resume})

    async def parse_resume(self, resume: str) -> Any:
        return await self.call(RESUME_PARSER, {"resume": resume})

    async def research_company(self, job_description: str) -> Any:
        return await self.call(COMPANY_RESEARCH, {"jobDescription": job_description})

    async def metrics_context(self, job_description: str) -> Any:
        return await self.call(METRICS_CONTEXT, {"jobDescription": job_description})

    async def score_relevancy(
        self,
        original_resume: str,
        tailored_resume: str,
        job_description: str,
        keywords: Optional[Dict[str, Any]] = None,
        cache_key: Optional[str] = None,
    ) -> Any:
        payload = {
            "originalResume": original_resume,
            "tailoredResume": tailored_resume,
            "jobDescription": job_description,
        }
        if keywords is not None:
            payload["keywords"] = keywords
        return await self.call(RELEVANCY_SCORER, payload, cache_key=cache_key)

    async def validate_resume(
        self,
        original_resume: str,
        tailored_resume: str,
        cache_key: Optional[str] = None,
    ) -> Any:
        return await self.call(
            RESUME_VALIDATOR,
            {"originalResume": original_resume, "tailoredResume": tailored_resume},
            cache_key=cache_key,
        )

    async def recommend_format(
        self,
        job_description: str,
        industry: str,
        job_title: str,
        tailored_resume: str,
    ) -> Any:
        return await self.call(FORMAT_RECOMMENDER, {
            "jobDescription": job_description,
            "industry": industry,
            "jobTitle": job_title,
            "tailoredResume": tailored_resume,
        })


_tool_client: Optional[ToolClient] = None


def get_tool_client() -> ToolClient:
    global _tool_client
    if _tool_client is None:
        from tailor_service.config import settings
        _tool_client = ToolClient(
            base_url=settings.TOOLS_BASE_URL,
            timeout=settings.TOOLS_TIMEOUT_SECONDS,
            max_attempts=settings.TOOLS_MAX_ATTEMPTS,
        )
    return _tool_client
