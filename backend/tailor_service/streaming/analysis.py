"""
Deterministic text analysis used around generation: keyword gaps,
prompt context, score targets and section splitting.
"""

import re
from typing import Any, Dict, List, Optional, Tuple

FOUND_KEYWORDS_CAP = 20
MISSING_KEYWORDS_CAP = 20
MISSING_KEYWORD_MIN_LENGTH = 5
PROMPT_MISSING_KEYWORDS_CAP = 20
DEFAULT_SCORE = 50

# Terms never suggested as missing (EEO boilerplate, application form fields, mission fluff)
MISSING_KEYWORDS_BLOCKLIST = frozenset({
    "anduril", "your", "select", "military", "veteran", "disability", "clearance", "disorder",
    "compensation", "duty", "roles", "form", "self", "requires", "external", "voluntary",
    "identification", "protected", "federal", "government", "role", "applicant", "candidate",
    "employment", "equal", "veterans", "confidential", "industries", "environments", "health",
    "defense technology", "advanced technology", "defense industry", "military systems",
    "allied military capabilities", "innovative", "transform", "bring", "changing", "defense",
    "technology", "mission", "capabilities", "allied", "cutting-edge", "cutting edge",
})

IMPORTANCE_ORDER = {"critical": 4, "high": 3, "medium": 2, "low": 1}

_UNICODE_BULLETS = re.compile(r"[●○•◦▪▸]")
_LONG_DASHES = re.compile(r"[—–]")
_TRAILING_SPACE = re.compile(r"[ \t]+$", re.MULTILINE)
_BLANK_RUNS = re.compile(r"\n{3,}")
_SECTION_BREAK = re.compile(r"\n(?=#|\n)")
_HEADING_MARKS = re.compile(r"^#+\s*")
_HTML_TAGS = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")

_COMPANY_GENERIC_PREFIX = re.compile(
    r"^(other|various|multiple|all|different|internal|cross[- ]?functional)\s+", re.IGNORECASE
)
_COMPANY_JD_PHRASE = re.compile(
    r"\b(teams?|to bring|to provide|to support|to deliver|engineering teams|product teams)\b",
    re.IGNORECASE,
)


def _variations(term: str) -> List[str]:
    t = (term or "").lower()
    return [t, re.sub(r"\s+", "", t), re.sub(r"\s+", "-", t), re.sub(r"\s+", "_", t)]


def appears_in(term: str, text_lower: str) -> bool:
    """True if the term, or a space-collapsed/hyphenated/underscored variant, occurs in the text."""
    return any(len(v) >= 3 and v in text_lower for v in _variations(term))


def _job_keywords(keywords: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    groups = (keywords or {}).get("keywords") or {}
    if not isinstance(groups, dict):
        return []
    items = list(groups.get("technical") or []) + list(groups.get("industry") or [])
    return [k for k in items if isinstance(k, dict)]


def _critical_terms(keywords: Optional[Dict[str, Any]]) -> List[str]:
    terms = []
    for kw in (keywords or {}).get("criticalKeywords") or []:
        term = kw if isinstance(kw, str) else (kw.get("term") if isinstance(kw, dict) else None)
        terms.append((term or "").strip())
    return terms


def _by_importance(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # Stable sort keeps extractor order among equals
    return sorted(
        items,
        key=lambda k: (IMPORTANCE_ORDER.get(k.get("importance"), 2), k.get("frequency") or 1),
        reverse=True,
    )


def find_missing_keywords(
    keywords: Optional[Dict[str, Any]],
    resume: str,
    limit: int = PROMPT_MISSING_KEYWORDS_CAP,
) -> List[str]:
    """
    Job keywords absent from the original resume, in prompt priority order.

    Critical keywords come first (they drive the relevancy score), then the
    remaining technical and industry keywords by importance, then frequency.
    """
    resume_lower = resume.lower()

    missing_critical = [
        term for term in _critical_terms(keywords)
        if len(term) >= 3 and not appears_in(term, resume_lower)
    ]
    critical_set = {t.lower() for t in missing_critical}

    rest = [
        k for k in _job_keywords(keywords)
        if len((k.get("term") or "").strip()) > 2
        and not appears_in(k["term"], resume_lower)
        and k["term"].lower() not in critical_set
    ]

    return (missing_critical + [k["term"] for k in _by_importance(rest)])[:limit]


def compute_keyword_gap(keywords: Optional[Dict[str, Any]], text: str) -> Dict[str, List[str]]:
    """
    Split job keywords into those present in ``text`` and those missing.

    Returns:
        ``{"foundInResume": [...], "missingKeywords": [...]}``, each capped at 20;
        missing terms shorter than 5 characters or on the blocklist are dropped
    """
    text_lower = text.lower()
    found: List[str] = []
    missing: List[str] = []
    seen = set()

    ordered = _critical_terms(keywords) + [
        (k.get("term") or "").strip() for k in _by_importance(_job_keywords(keywords))
    ]
    for term in ordered:
        if len(term) < 3 or term.lower() in seen:
            continue
        seen.add(term.lower())
        (found if appears_in(term, text_lower) else missing).append(term)

    missing = [
        term for term in missing
        if len(term) >= MISSING_KEYWORD_MIN_LENGTH and term.lower() not in MISSING_KEYWORDS_BLOCKLIST
    ]

    return {
        "foundInResume": found[:FOUND_KEYWORDS_CAP],
        "missingKeywords": missing[:MISSING_KEYWORDS_CAP],
    }


def looks_like_company_name(name: Optional[str]) -> bool:
    """Reject job-description phrases that company research mistook for a name."""
    text = (name or "").strip()
    if not text:
        return False
    if len(text.split()) > 5:
        return False
    if _COMPANY_GENERIC_PREFIX.match(text):
        return False
    if _COMPANY_JD_PHRASE.search(text):
        return False
    return True


def keyword_context(keywords: Optional[Dict[str, Any]], limit: int = 15) -> str:
    groups = (keywords or {}).get("keywords") or {}
    technical = (groups.get("technical") or []) if isinstance(groups, dict) else []
    return ", ".join(k.get("term", "") for k in technical[:limit] if isinstance(k, dict))


def company_context(company_research: Optional[Dict[str, Any]]) -> str:
    if not company_research or not company_research.get("companyInfo"):
        return ""
    industry = (company_research.get("companyInfo") or {}).get("industry") or ""
    name = (company_research.get("companyName") or "").strip()
    return f"{name} ({industry})" if name else industry


def target_score(baseline: float) -> Tuple[float, float]:
    """
    Improvement to aim for and the resulting target score.

    Returns:
        (target_improvement, target_score)
    """
    gap = 100 - baseline
    if gap > 20:
        improvement = 20
    elif gap > 15:
        improvement = 15
    else:
        improvement = max(15, gap)
    return improvement, min(100, baseline + improvement)


def sanitize_resume(text: str) -> str:
    """Normalise bullets, dashes and whitespace for ATS parsing."""
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\u00a0", " ")
    text = _UNICODE_BULLETS.sub("-", text)
    text = _LONG_DASHES.sub("-", text)
    text = _TRAILING_SPACE.sub("", text)
    text = _BLANK_RUNS.sub("\n\n", text)
    return text.strip()


def split_sections(text: str) -> List[Dict[str, Any]]:
    """
    Break a markdown resume into section frames.

    ``index`` and ``total`` count every chunk, blank ones included, so
    indices may skip where a chunk was empty.
    """
    chunks = _SECTION_BREAK.split(text)
    frames = []
    for position, chunk in enumerate(chunks, start=1):
        content = chunk.strip()
        if not content:
            continue
        frames.append({
            "index": position,
            "total": len(chunks),
            "content": content,
            "sectionName": _HEADING_MARKS.sub("", content.split("\n")[0]),
        })
    return frames


def clean_job_description(text: str, max_length: int = 8000) -> str:
    """Strip pasted HTML, decode the common entities and collapse whitespace."""
    cleaned = _HTML_TAGS.sub("", text)
    cleaned = (
        cleaned.replace("&nbsp;", " ")
        .replace("&amp;", "&")
        .replace("&lt;", "<")
        .replace("&gt;", ">")
    )
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    if max_length > 0 and len(cleaned) > max_length:
        cleaned = cleaned[:max_length] + "..."
    return cleaned
