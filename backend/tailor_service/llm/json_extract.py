"""
Parsing of structured LLM output.

Two tiers, both returning the same typed shape:

1. Strict: locate a JSON object in the text (code fence, outermost object,
   first/last brace), repair common model mistakes, validate with pydantic.
2. Heuristic: pull the ``"tailoredResume"`` string out of otherwise broken
   JSON with a regular expression.

``parse_tailoring_output`` returns None only when neither tier applies.
"""

import re
import json
import logging
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?\s*(\{[\s\S]*\})\s*```")
_OBJECT = re.compile(r"\{[\s\S]*\}")
_ARRAY = re.compile(r"\[[\s\S]*\]")
_TAILORED_FIELD = re.compile(r'"tailoredResume"\s*:\s*"((?:[^"\\]|\\.)*)"')

_NUMBER_WORDS = {
    "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
    "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14, "fifteen": 15,
    "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50, "sixty": 60,
    "seventy": 70, "eighty": 80, "ninety": 90, "hundred": 100,
}
_METRIC_WORD = re.compile(
    r'"(quantifiedBulletsAdded|atsKeywordsMatched|activeVoiceConversions|sectionsOptimized)"\s*:\s*('
    + "|".join(_NUMBER_WORDS)
    + r")\b",
    re.IGNORECASE,
)


class ImprovementMetrics(BaseModel):
    quantifiedBulletsAdded: int = 0
    atsKeywordsMatched: int = 0
    activeVoiceConversions: int = 0
    sectionsOptimized: int = 0

    @field_validator("*", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> int:
        if value is None:
            return 0
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0


class TailoringOutput(BaseModel):
    tailoredResume: str
    improvementMetrics: ImprovementMetrics = Field(default_factory=ImprovementMetrics)


def _loads(candidate: str) -> Optional[Any]:
    try:
        return json.loads(candidate)
    except ValueError:
        return None


def _parses(candidate: str) -> bool:
    return _loads(candidate) is not None or _loads(fix_common_json_errors(candidate)) is not None


def extract_json_from_text(text: str) -> Optional[str]:
    """Return the first substring of ``text`` that parses as JSON (possibly after repair), if any."""
    if not text:
        return None

    fenced = _CODE_FENCE.search(text)
    if fenced:
        return fenced.group(1).strip()

    for pattern in (_OBJECT, _ARRAY):
        match = pattern.search(text)
        if match and _parses(match.group(0)):
            return match.group(0)

    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        candidate = text[first:last + 1]
        if _parses(candidate):
            return candidate

    return None


def fix_common_json_errors(json_string: str) -> str:
    """Replace spelled-out numbers in metric fields (e.g. ``"thirty"`` -> 30)."""
    return _METRIC_WORD.sub(
        lambda m: f'"{m.group(1)}": {_NUMBER_WORDS[m.group(2).lower()]}',
        json_string,
    )


def parse_json_from_text(text: str) -> Optional[Any]:
    """Extract and decode JSON embedded in free-form model output."""
    candidate = extract_json_from_text(text)
    if candidate is None:
        return None

    data = _loads(candidate)
    if data is None:
        data = _loads(fix_common_json_errors(candidate))
        if data is None:
            logger.error("Failed to parse extracted JSON from model output")
    return data


def extract_tailored_resume_from_text(text: str) -> Optional[str]:
    """Heuristic tier: recover the resume string from malformed JSON."""
    if not text or len(text) < 50:
        return None

    match = _TAILORED_FIELD.search(text)
    if not match:
        return None

    # Undo JSON string escapes
    try:
        return json.loads(f'"{match.group(1)}"')
    except ValueError:
        return (
            match.group(1)
            .replace("\\n", "\n")
            .replace("\\t", "\t")
            .replace('\\"', '"')
            .replace("\\\\", "\\")
        )


def parse_tailoring_output(text: str) -> Optional[TailoringOutput]:
    """
    Apply both tiers to generated text.

    Returns:
        TailoringOutput, or None if no resume text could be recovered
    """
    data = parse_json_from_text(text)
    if isinstance(data, dict) and data.get("tailoredResume"):
        try:
            return TailoringOutput.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Model output failed validation, trying heuristic extraction: {e}")

    extracted = extract_tailored_resume_from_text(text)
    if extracted:
        return TailoringOutput(tailoredResume=extracted)

    return None
