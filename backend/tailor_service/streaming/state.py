"""
Pipeline run state machine.

Stages only move forward, progress never decreases and a run ends with at
most one terminal frame (``complete`` or ``error``) unless it is aborted.
"""

import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .events import EventStream

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    INIT = "init"
    PREPROCESSING = "preprocessing"
    SCORING = "scoring"
    GENERATING = "generating"
    PROCESSING = "processing"
    POST_SCORING = "post_scoring"
    COMPLETE = "complete"
    ERROR = "error"
    ABORTED = "aborted"

    @property
    def wire_name(self) -> str:
        # Both scoring phases look the same to clients
        if self is Stage.POST_SCORING:
            return Stage.SCORING.value
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STAGES


FORWARD_ORDER: List[Stage] = [
    Stage.INIT,
    Stage.PREPROCESSING,
    Stage.SCORING,
    Stage.GENERATING,
    Stage.PROCESSING,
    Stage.POST_SCORING,
    Stage.COMPLETE,
]

TERMINAL_STAGES = frozenset({Stage.COMPLETE, Stage.ERROR, Stage.ABORTED})


class InvalidTransitionError(Exception):
    """Raised on a backwards stage move, decreasing progress or a move out of a terminal stage."""
    pass


class PipelineAborted(Exception):
    """Raised inside a run once its stream is closed, to stop at the next emission point."""
    pass


@dataclass
class RunResults:
    """Partial results accumulated as the run progresses."""
    keywords: Dict[str, Any] = field(default_factory=lambda: {"keywords": {}, "keywordDensity": {}})
    parsed_resume: Dict[str, Any] = field(
        default_factory=lambda: {"sections": [], "experience": [], "education": [], "skills": {}}
    )
    company_research: Optional[Dict[str, Any]] = None
    metrics_context: Optional[Any] = None
    baseline_score: float = 50
    target_score: float = 70
    generated_text: Optional[str] = None
    tailored_resume: Optional[str] = None
    improvement_metrics: Dict[str, int] = field(default_factory=lambda: {
        "quantifiedBulletsAdded": 0,
        "atsKeywordsMatched": 0,
        "activeVoiceConversions": 0,
        "sectionsOptimized": 0,
    })
    before_score: float = 50
    after_score: float = 50
    before_metrics: Optional[Dict[str, Any]] = None
    after_metrics: Optional[Dict[str, Any]] = None
    validation_result: Optional[Any] = None
    format_spec: Optional[Any] = None
    keyword_gap: Dict[str, List[str]] = field(
        default_factory=lambda: {"foundInResume": [], "missingKeywords": []}
    )
    resume_id: Optional[str] = None


class PipelineRun:
    def __init__(self, stream: EventStream):
        self.stream = stream
        self.stage = Stage.INIT
        self.progress = 0
        self.results = RunResults()

    @property
    def closed(self) -> bool:
        return self.stream.closed or self.stage.is_terminal

    @property
    def terminal(self) -> bool:
        return self.stage.is_terminal

    def _advance(self, stage: Stage, progress: Optional[int] = None) -> None:
        if self.stage.is_terminal:
            raise InvalidTransitionError(f"Run already ended in {self.stage.value}")

        if stage not in (Stage.ERROR, Stage.ABORTED):
            if FORWARD_ORDER.index(stage) < FORWARD_ORDER.index(self.stage):
                raise InvalidTransitionError(f"Cannot move from {self.stage.value} back to {stage.value}")

        if progress is not None:
            if progress < self.progress:
                raise InvalidTransitionError(f"Progress cannot go from {self.progress} to {progress}")
            self.progress = progress

        self.stage = stage

    def ensure_open(self) -> None:
        """Raise PipelineAborted if the client is gone or the run already ended."""
        if self.closed:
            if not self.stage.is_terminal:
                self.stage = Stage.ABORTED
            raise PipelineAborted()

    def status(self, stage: Stage, message: str, progress: int) -> None:
        """
        Emit a status frame.

        Raises:
            PipelineAborted: The stream is closed; nothing was written
        """
        self.ensure_open()
        self._advance(stage, progress)
        self.stream.send("status", {"stage": stage.wire_name, "message": message, "progress": progress})

    def section(self, payload: Dict[str, Any]) -> None:
        self.ensure_open()
        self.stream.send("section", payload)

    def complete(self, payload: Dict[str, Any]) -> None:
        self.ensure_open()
        self._advance(Stage.COMPLETE, 100)
        self.stream.send("complete", payload)
        self.stream.close()

    def fail(self, message: str, can_retry: bool = False) -> bool:
        """
        Emit the error frame and close. Returns False if the run had
        already ended or the client is gone.
        """
        if self.closed:
            return False
        self._advance(Stage.ERROR)
        self.stream.send("error", {"error": message, "canRetry": can_retry})
        self.stream.close()
        return True

    def abort(self) -> None:
        if not self.stage.is_terminal:
            self._advance(Stage.ABORTED)
        self.stream.abort()
