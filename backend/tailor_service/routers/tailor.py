import asyncio
import logging
from typing import Optional, Set

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from tailor_service.config import settings
from tailor_service.llm.groq_client import get_text_generator
from tailor_service.ratelimit.admission import RequestAdmissionGate, get_admission_gate
from tailor_service.schemas.tailor import QuotaExceededResponse, TailorStreamRequest, ResumeVersionsResponse
from tailor_service.store import ResumeStore, get_resume_store
from tailor_service.streaming.events import EventStream, SSE_HEADERS
from tailor_service.streaming.pipeline import ENDPOINT, TailoringPipeline, TailorRequest
from tailor_service.streaming.state import PipelineRun
from tailor_service.tools.client import get_tool_client

logger = logging.getLogger(__name__)

router = APIRouter()

# Running pipeline tasks, held so they are not collected before they finish
_running: Set[asyncio.Task] = set()

_pipeline: Optional[TailoringPipeline] = None


def get_pipeline() -> TailoringPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = TailoringPipeline(
            tool_client=get_tool_client(),
            generator=get_text_generator(),
            store=get_resume_store(),
            timeout=settings.PIPELINE_TIMEOUT_SECONDS,
        )
    return _pipeline


@router.post("/stream")
async def tailor_stream(
    body: TailorStreamRequest,
    request: Request,
    gate: RequestAdmissionGate = Depends(get_admission_gate),
    pipeline: TailoringPipeline = Depends(get_pipeline),
):
    """Tailor a resume and stream progress as Server-Sent Events"""
    if not body.resume or not body.jobDescription:
        return JSONResponse(status_code=400, content={"error": "Missing resume or job description"})

    model_key = body.modelKey or settings.DEFAULT_MODEL_KEY

    decision = gate.check(
        request.headers,
        ENDPOINT,
        model_key=model_key,
        client_host=request.client.host if request.client else None,
        body_text=body.resume + body.jobDescription,
    )
    if not decision.allowed:
        gate.record_denial(decision, ENDPOINT, model_key=model_key, user_id=body.userId)
        retry_after = decision.retry_after or 60
        return JSONResponse(
            status_code=429,
            content=QuotaExceededResponse(retryAfter=retry_after).model_dump(),
            headers={"Retry-After": str(retry_after)},
        )

    stream = EventStream()
    run = PipelineRun(stream)
    task = asyncio.create_task(pipeline.run(run, TailorRequest(
        resume=body.resume,
        job_description=body.jobDescription,
        model_key=model_key,
        session_id=body.sessionId,
        user_id=body.userId,
        job_title=body.jobTitle,
        parent_resume_id=body.parentResumeId,
    )))
    _running.add(task)
    task.add_done_callback(_running.discard)

    async def event_source():
        try:
            async for frame in stream.frames():
                yield frame
        finally:
            # Client went away before the run ended
            if not run.terminal:
                run.abort()

    return StreamingResponse(event_source(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/resumes/{resume_id}/versions", response_model=ResumeVersionsResponse)
async def list_resume_versions(
    resume_id: str,
    store: ResumeStore = Depends(get_resume_store),
):
    """List every stored version in the chain containing a resume"""
    versions = store.list_versions(resume_id)
    if versions is None:
        raise HTTPException(status_code=404, detail="Resume not found")
    return versions


async def cancel_running_pipelines() -> int:
    """Cancel in-flight pipeline runs and wait for them to unwind."""
    tasks = list(_running)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    return len(tasks)
