"""
Streaming Tailoring Pipeline

One run takes a resume and a job description through:

    preprocessing -> baseline scoring -> generation -> processing
    -> post-scoring -> persistence -> complete

Only generation is allowed to fail the run. Every enrichment, scoring or
persistence failure falls back to a default and the run carries on.
"""

import time
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional

from tailor_service.llm.groq_client import GroqTextGenerator
from tailor_service.llm.json_extract import parse_tailoring_output
from tailor_service.observability.telemetry import TelemetryEventType, emit_telemetry_event
from tailor_service.observability.tracing import get_tracer, trace_span, add_span_attributes
from tailor_service.ratelimit.metrics import record_pipeline_fallback, record_pipeline_outcome
from tailor_service.store import ResumeStore, TailoredResumeDraft
from tailor_service.tools.cache import generate_cache_key
from tailor_service.tools.client import ToolClient

from .analysis import (
    DEFAULT_SCORE,
    clean_job_description,
    company_context,
    compute_keyword_gap,
    find_missing_keywords,
    keyword_context,
    looks_like_company_name,
    sanitize_resume,
    split_sections,
    target_score,
)
from .state import PipelineAborted, PipelineRun, RunResults, Stage

logger = logging.getLogger(__name__)
tracer = get_tracer("tailor_service.pipeline")

ENDPOINT = "tailor-stream"
DEFAULT_INDUSTRY = "Technology"


@dataclass
class TailorRequest:
    resume: str
    job_description: str
    model_key: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    job_title: Optional[str] = None
    parent_resume_id: Optional[str] = None


def build_tailoring_prompt(
    resume: str,
    job_description: str,
    baseline_score: float,
    target: float,
    missing_keywords: List[str],
    keywords: str,
    company: str,
    job_title: Optional[str],
    metrics_context: Optional[Any],
) -> str:
    lines = [
        "Tailor the resume below to the job description.",
        f"Current job match score: {baseline_score}. Target score: {target}.",
    ]
    if job_title:
        lines.append(f"Target role: {job_title}")
    if company:
        lines.append(f"Company: {company}")
    if keywords:
        lines.append(f"Key technical keywords: {keywords}")
    if missing_keywords:
        lines.append(f"Work in these missing keywords where truthful: {', '.join(missing_keywords)}")
    if metrics_context:
        lines.append(f"Metrics guidance: {metrics_context}")
    lines.extend([
        "Do not invent employers, titles, dates or credentials.",
        'Respond with JSON only: {"tailoredResume": "<markdown>", "improvementMetrics": '
        '{"quantifiedBulletsAdded": 0, "atsKeywordsMatched": 0, "activeVoiceConversions": 0, '
        '"sectionsOptimized": 0}}',
        "",
        "RESUME:",
        resume,
        "",
        "JOB DESCRIPTION:",
        job_description,
    ])
    return "\n".join(lines)


class TailoringPipeline:
    """
    Runs tailoring requests against injected collaborators.

    ``store`` may be None, in which case nothing is persisted and the
    ``complete`` payload carries ``resumeId: null``.
    """

    def __init__(
        self,
        tool_client: ToolClient,
        generator: GroqTextGenerator,
        store: Optional[ResumeStore] = None,
        timeout: Optional[float] = 60.0,
    ):
        self.tools = tool_client
        self.generator = generator
        self.store = store
        self.timeout = timeout

    async def run(self, run: PipelineRun, request: TailorRequest) -> None:
        """
        Drive ``run`` to a terminal state. Never raises.
        """
        start = time.time()
        outcome = "complete"
        try:
            await asyncio.wait_for(self._execute(run, request), timeout=self.timeout)
        except PipelineAborted:
            outcome = "aborted"
            logger.info("Client disconnected, pipeline stopped")
        except asyncio.TimeoutError:
            outcome = "timeout"
            logger.error(f"Pipeline exceeded {self.timeout}s")
            self._fail(run, request, "Request timed out. Please try again.", can_retry=False)
        except Exception as e:
            outcome = "error"
            logger.error(f"Pipeline failed: {e}", exc_info=True)
            self._fail(run, request, str(e) or "An error occurred", can_retry=getattr(e, "status", None) == 429)
        finally:
            record_pipeline_outcome(outcome, (time.time() - start) * 1000)

    def _fail(self, run: PipelineRun, request: TailorRequest, message: str, can_retry: bool) -> None:
        # Only failures a client actually saw are reported
        if not run.fail(message, can_retry=can_retry):
            return
        emit_telemetry_event(TelemetryEventType.RESUME_TAILOR_ERROR, {
            "endpoint": ENDPOINT,
            "error": message,
            "canRetry": can_retry,
            "userId": request.user_id or "anonymous",
        })

    async def _execute(self, run: PipelineRun, request: TailorRequest) -> None:
        resume = request.resume
        job_description = clean_job_description(request.job_description, max_length=8000)
        results = run.results

        # Preprocessing
        run.status(Stage.PREPROCESSING, "Starting analysis...", 10)
        run.status(Stage.PREPROCESSING, "Extracting keywords...", 20)
        with trace_span(tracer, "pipeline.preprocessing"):
            await self._preprocess(run, request)

        missing_keywords = find_missing_keywords(results.keywords, resume)
        job_title = (request.job_title or "").strip() or (results.company_research or {}).get("jobTitle") or None

        # Baseline scoring
        run.status(Stage.SCORING, "Calculating baseline job match score...", 35)
        results.baseline_score = await self._baseline_score(resume, job_description)

        run.status(Stage.GENERATING, "Tailoring your resume...", 40)
        _, results.target_score = target_score(results.baseline_score)

        prompt = build_tailoring_prompt(
            resume=resume,
            job_description=job_description,
            baseline_score=results.baseline_score,
            target=results.target_score,
            missing_keywords=missing_keywords,
            keywords=keyword_context(results.keywords),
            company=company_context(results.company_research),
            job_title=job_title,
            metrics_context=results.metrics_context,
        )

        # Generation, the only fatal phase
        run.status(Stage.GENERATING, "Optimizing content...", 60)
        with trace_span(tracer, "pipeline.generate", {"model_key": request.model_key or "default"}) as span:
            generation = await self.generator.generate(prompt, request.model_key)
            add_span_attributes(span, {"output_chars": len(generation.text)})
        results.generated_text = generation.text

        # Processing
        run.status(Stage.PROCESSING, "Processing results...", 80)
        self._apply_generation(results, generation.text, resume)
        results.tailored_resume = sanitize_resume(results.tailored_resume or resume)
        results.keyword_gap = compute_keyword_gap(results.keywords, results.tailored_resume)

        for section in split_sections(results.tailored_resume):
            run.section(section)

        # Post-scoring
        run.status(Stage.POST_SCORING, "Calculating job match score...", 90)
        with trace_span(tracer, "pipeline.post_scoring"):
            await self._post_score(resume, job_description, results)
            results.format_spec = await self._recommend_format(job_description, results)

        # No record for a client that left during post-scoring
        run.ensure_open()
        results.resume_id = await self._persist(request, results, job_description, job_title)

        run.complete({
            "tailoredResume": results.tailored_resume,
            "improvementMetrics": results.improvement_metrics,
            "matchScore": results.after_score,
            "beforeScore": results.before_score,
            "metrics": results.after_metrics,
            "keywordGap": results.keyword_gap,
            "validationResult": results.validation_result,
            "formatSpec": results.format_spec,
            "resumeId": results.resume_id,
            "progress": 100,
        })

    async def _gather(self, phase: str, calls: Dict[str, Awaitable[Any]]) -> Dict[str, Any]:
        """Await calls concurrently; a failed call maps to None and is counted as a fallback."""
        settled = await asyncio.gather(*calls.values(), return_exceptions=True)
        results: Dict[str, Any] = {}
        for name, outcome in zip(calls, settled):
            if isinstance(outcome, BaseException):
                logger.warning(f"{phase} tool {name} failed, using default: {outcome}")
                record_pipeline_fallback(phase, name)
                results[name] = None
            else:
                results[name] = outcome
        return results

    async def _preprocess(self, run: PipelineRun, request: TailorRequest) -> None:
        results = run.results
        keyword_jd = clean_job_description(request.job_description, max_length=12000)
        try:
            settled = await self._gather("preprocessing", {
                "keywords": self.tools.extract_keywords(keyword_jd, request.resume),
                "parsed_resume": self.tools.parse_resume(request.resume),
                "company_research": self.tools.research_company(request.job_description),
                "metrics_context": self.tools.metrics_context(request.job_description),
            })
        except Exception as e:
            logger.warning(f"Preprocessing failed, continuing without enhanced context: {e}")
            record_pipeline_fallback("preprocessing", "all")
            return

        if isinstance(settled["keywords"], dict):
            results.keywords = settled["keywords"]
        if isinstance(settled["parsed_resume"], dict):
            results.parsed_resume = settled["parsed_resume"]

        company = settled["company_research"]
        if isinstance(company, dict):
            if company.get("companyName") and not looks_like_company_name(company["companyName"]):
                company = {**company, "companyName": ""}
            results.company_research = company

        results.metrics_context = settled["metrics_context"] or None

    async def _baseline_score(self, resume: str, job_description: str) -> float:
        try:
            response = await self.tools.score_relevancy(
                resume,
                resume,
                job_description,
                cache_key=generate_cache_key("baseline-ats", f"{resume}:{job_description}"),
            )
        except Exception as e:
            logger.warning(f"Error calculating baseline score: {e}")
            record_pipeline_fallback("baseline", "relevancy")
            return DEFAULT_SCORE

        if isinstance(response, dict) and isinstance(response.get("before"), (int, float)):
            return response["before"]
        return DEFAULT_SCORE

    def _apply_generation(self, results: RunResults, text: str, resume: str) -> None:
        output = parse_tailoring_output(text)
        if output is not None:
            results.tailored_resume = output.tailoredResume
            results.improvement_metrics = output.improvementMetrics.model_dump()
        elif "improvementMetrics" in text:
            # Broken JSON blob: never show it to the user
            logger.warning("Could not recover resume from generated JSON, returning original")
            results.tailored_resume = resume
        else:
            results.tailored_resume = text

    async def _post_score(self, resume: str, job_description: str, results: RunResults) -> None:
        tailored = results.tailored_resume
        try:
            settled = await self._gather("post_scoring", {
                "relevancy": self.tools.score_relevancy(
                    resume,
                    tailored,
                    job_description,
                    keywords=results.keywords,
                    cache_key=generate_cache_key("relevancy", f"{resume}:{tailored}:{job_description}"),
                ),
                "validation": self.tools.validate_resume(
                    resume,
                    tailored,
                    cache_key=generate_cache_key("validation", f"{resume}:{tailored}"),
                ),
            })
        except Exception as e:
            logger.warning(f"Post-processing failed: {e}")
            record_pipeline_fallback("post_scoring", "all")
            return

        relevancy = settled["relevancy"]
        if isinstance(relevancy, dict):
            before = relevancy.get("before")
            after = relevancy.get("after")
            results.before_score = before if before is not None else (after if after is not None else DEFAULT_SCORE)
            results.after_score = after if after is not None else results.before_score

            before_metrics = relevancy.get("beforeMetrics")
            after_metrics = relevancy.get("afterMetrics")
            if isinstance(before_metrics, dict) and isinstance(after_metrics, dict):
                results.before_metrics = before_metrics
                results.after_metrics = after_metrics
                results.improvement_metrics = _metrics_delta(before_metrics, after_metrics)

        results.validation_result = settled["validation"]

    async def _recommend_format(self, job_description: str, results: RunResults) -> Optional[Any]:
        company = results.company_research or {}
        try:
            return await self.tools.recommend_format(
                job_description,
                (company.get("companyInfo") or {}).get("industry") or DEFAULT_INDUSTRY,
                company.get("jobTitle") or "",
                results.tailored_resume,
            )
        except Exception as e:
            logger.warning(f"Format recommender failed, using defaults: {e}")
            record_pipeline_fallback("post_scoring", "format")
            return None

    async def _persist(
        self,
        request: TailorRequest,
        results: RunResults,
        job_description: str,
        job_title: Optional[str],
    ) -> Optional[str]:
        if self.store is None:
            return None

        draft = TailoredResumeDraft(
            original_content=request.resume,
            tailored_content=results.tailored_resume,
            job_description=job_description,
            match_score={
                "before": results.before_score,
                "after": results.after_score,
                "beforeMetrics": results.before_metrics,
                "afterMetrics": results.after_metrics,
                "keywordGap": results.keyword_gap,
            },
            improvement_metrics=results.improvement_metrics,
            job_title=job_title,
            company_name=(results.company_research or {}).get("companyName"),
            session_id=request.session_id,
            user_id=request.user_id,
            parent_resume_id=request.parent_resume_id,
        )
        try:
            with trace_span(tracer, "pipeline.persist"):
                # Blocking DB work stays off the event loop
                return await asyncio.to_thread(self.store.save_tailored_resume, draft)
        except Exception as e:
            logger.error(f"Error saving tailored resume: {e}")
            return None



def _metrics_delta(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, int]:
    def matched(metrics: Dict[str, Any]) -> int:
        return (metrics.get("criticalKeywords") or {}).get("matched") or 0

    def evidence(metrics: Dict[str, Any]) -> int:
        return (metrics.get("concreteEvidence") or {}).get("withEvidence") or 0

    return {
        "quantifiedBulletsAdded": max(0, evidence(after) - evidence(before)),
        "atsKeywordsMatched": max(0, matched(after) - matched(before)),
        "activeVoiceConversions": 0,
        "sectionsOptimized": 0,
    }
