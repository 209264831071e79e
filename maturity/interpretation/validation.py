# FILE: maturity/interpretation/validation.py
"""
Boundary validation for collaborator output.

Generator and critic responses are loosely-typed JSON (or prose wrapping
JSON). Nothing past this module sees raw payloads: every response becomes
a Draft, Assessment or FinalReview tagged with its origin.

Fallback rules:
- critic assess: unparseable -> empty gaps/questions, overall_quality=yellow
- critic final: unparseable -> ready=True (the local quality gate still runs)
- generator: partial sections are kept and missing ones get a placeholder;
  a response with no usable section at all is MalformedResponseError
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from maturity.interpretation.errors import MalformedResponseError
from maturity.interpretation.evidence import find_unknown_evidence, is_well_formed, section_citations
from maturity.interpretation.schemas import (
    Assessment,
    CandidateQuestion,
    Draft,
    DraftSection,
    FinalReview,
    Gap,
    PolishEdit,
    QualityRating,
    QualityReport,
    QuestionType,
    SECTION_ORDER,
    SECTION_TITLES,
    SectionId,
    Violation,
)

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "Data insufficient for automated interpretation. Please consult your partner."

MAX_SECTION_WORDS = 150
MAX_MCQ_OPTIONS = 4
OTHER_OPTION = "Other"

FORBIDDEN_PHRASES: tuple[str, ...] = (
    "your score is",
    "you scored",
    "your organization scored",
    "the assessment shows",
    "based on your responses",
    "the diagnostic indicates",
    "room for improvement",
    "opportunities to enhance",
    "areas for development",
    "it is recommended",
    "you may want to consider",
    "you might want to",
    "could potentially",
)

_QUESTION_TYPE_ALIASES = {
    "yes_no": QuestionType.YES_NO,
    "yesno": QuestionType.YES_NO,
    "yes/no": QuestionType.YES_NO,
    "boolean": QuestionType.YES_NO,
    "mcq": QuestionType.MCQ,
    "multiple_choice": QuestionType.MCQ,
    "choice": QuestionType.MCQ,
    "free_text": QuestionType.FREE_TEXT,
    "text": QuestionType.FREE_TEXT,
    "open": QuestionType.FREE_TEXT,
}


# =============================================================================
# JSON EXTRACTION
# =============================================================================

def extract_json_object(raw_output: str) -> Optional[Dict[str, Any]]:
    """Pull a JSON object out of model output that may contain markdown/prose.

    Handles clean JSON, ```json fences and JSON with leading/trailing prose.
    Returns None when nothing parses to an object.
    """
    if not raw_output:
        return None

    text = raw_output.strip()

    try:
        parsed = json.loads(text)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass

    fence_match = re.search(r"```(?:json)?\s*\n?([\s\S]*?)\n?```", text, re.IGNORECASE)
    if fence_match:
        try:
            parsed = json.loads(fence_match.group(1).strip())
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape = False
    for i, char in enumerate(text[start:], start):
        if escape:
            escape = False
            continue
        if char == "\\":
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                try:
                    parsed = json.loads(text[start:i + 1])
                except json.JSONDecodeError:
                    return None
                return parsed if isinstance(parsed, dict) else None
    return None


def coerce_payload(raw: Any) -> Optional[Dict[str, Any]]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (str, bytes)):
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        return extract_json_object(text)
    return None


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


# =============================================================================
# DRAFT
# =============================================================================

def _section_id(value: Any) -> Optional[SectionId]:
    key = re.sub(r"[\s\-]+", "_", str(value or "").strip().lower())
    try:
        return SectionId(key)
    except ValueError:
        return None


def _placeholder(section_id: SectionId) -> DraftSection:
    return DraftSection(
        id=section_id,
        title=SECTION_TITLES[section_id],
        content=FALLBACK_MESSAGE,
        placeholder=True,
    )


def validate_draft(raw: Any) -> Draft:
    """Generator output -> Draft with exactly five sections in canonical order."""
    payload = coerce_payload(raw)
    if payload is None:
        raise MalformedResponseError("generator returned no JSON object")

    raw_sections = payload.get("sections")
    if isinstance(raw_sections, dict):
        raw_sections = [dict(v, id=k) if isinstance(v, dict) else {"id": k, "content": v} for k, v in raw_sections.items()]
    if not isinstance(raw_sections, list):
        raise MalformedResponseError("generator response has no sections")

    defects: List[str] = []
    parsed: Dict[SectionId, DraftSection] = {}
    for i, item in enumerate(raw_sections):
        if not isinstance(item, dict):
            defects.append(f"sections[{i}] is not an object")
            continue
        sid = _section_id(item.get("id") or item.get("section_id"))
        if sid is None:
            defects.append(f"sections[{i}] has unknown id {item.get('id')!r}")
            continue
        if sid in parsed:
            defects.append(f"duplicate section {sid.value}")
            continue
        content = item.get("content")
        if not isinstance(content, str) or not content.strip():
            defects.append(f"section {sid.value} has no content")
            parsed[sid] = _placeholder(sid)
            continue
        parsed[sid] = DraftSection(
            id=sid,
            title=str(item.get("title") or SECTION_TITLES[sid]),
            content=content.strip(),
            evidence_ids=[e.lower() for e in _str_list(item.get("evidence_ids"))],
        )

    if not any(not s.placeholder for s in parsed.values()):
        raise MalformedResponseError("generator response has no usable section")

    sections = []
    for sid in SECTION_ORDER:
        if sid not in parsed:
            defects.append(f"section {sid.value} missing")
            parsed[sid] = _placeholder(sid)
        sections.append(parsed[sid])

    if defects:
        logger.warning(f"[validation] draft fallback: {'; '.join(defects)}")

    return Draft(
        sections=sections,
        evidence_ids_used=[e.lower() for e in _str_list(payload.get("evidence_ids_used"))],
        gaps_marked=_str_list(payload.get("gaps_marked")),
        origin="fallback" if defects else "parsed",
        defects=defects,
    )


# =============================================================================
# QUESTIONS
# =============================================================================

def normalize_question(item: Any) -> Tuple[Optional[CandidateQuestion], Optional[str]]:
    """One critic question -> (question, defect). Question is None if unusable."""
    if not isinstance(item, dict):
        return None, "question is not an object"
    text = str(item.get("text") or item.get("question") or "").strip()
    if not text:
        return None, "question has no text"

    raw_type = str(item.get("type") or "").strip().lower()
    qtype = _QUESTION_TYPE_ALIASES.get(raw_type)
    defect = None
    if qtype is None:
        qtype = QuestionType.FREE_TEXT
        defect = f"unknown question type {raw_type!r}, using free_text"

    options: List[str] = []
    if qtype == QuestionType.MCQ:
        for opt in _str_list(item.get("options")):
            if opt.lower() == OTHER_OPTION.lower() or opt in options:
                continue
            options.append(opt)
        if len(options) < 2:
            qtype = QuestionType.FREE_TEXT
            options = []
            defect = "mcq with fewer than two options, using free_text"
        else:
            options = options[:MAX_MCQ_OPTIONS] + [OTHER_OPTION]

    gap_id = item.get("gap_id")
    return (
        CandidateQuestion(
            gap_id=str(gap_id) if gap_id not in (None, "") else None,
            type=qtype,
            text=text,
            options=options,
            rationale=str(item.get("rationale") or "").strip(),
        ),
        defect,
    )


# =============================================================================
# ASSESSMENT
# =============================================================================

def _coerce_severity(value: Any) -> Optional[int]:
    try:
        return max(1, min(5, int(round(float(value)))))
    except (TypeError, ValueError, OverflowError):
        return None


def default_assessment(defect: str) -> Assessment:
    return Assessment(origin="fallback", defects=[defect])


def validate_assessment(raw: Any) -> Assessment:
    """Critic assess output -> Assessment. Never raises."""
    payload = coerce_payload(raw)
    if payload is None:
        logger.warning("[validation] critic assessment unparseable, using default")
        return default_assessment("critic assessment unparseable")

    defects: List[str] = []

    gaps: List[Gap] = []
    raw_gaps = payload.get("gaps")
    if raw_gaps is not None and not isinstance(raw_gaps, list):
        defects.append("gaps is not a list")
        raw_gaps = []
    for i, item in enumerate(raw_gaps or []):
        if not isinstance(item, dict):
            defects.append(f"gaps[{i}] is not an object")
            continue
        severity = _coerce_severity(item.get("severity"))
        if severity is None:
            defects.append(f"gaps[{i}] severity missing, using 3")
            severity = 3
        try:
            gaps.append(
                Gap(
                    gap_id=str(item.get("gap_id") or item.get("id") or f"gap_{i + 1}"),
                    section=str(item["section"]) if item.get("section") else None,
                    description=str(item.get("description") or ""),
                    severity=severity,
                    related_evidence_ids=[e.lower() for e in _str_list(item.get("related_evidence_ids"))],
                )
            )
        except ValidationError as exc:
            defects.append(f"gaps[{i}] invalid: {exc.errors()[0].get('msg')}")

    raw_quality = str(payload.get("overall_quality") or "").strip().lower()
    try:
        quality = QualityRating(raw_quality)
    except ValueError:
        defects.append(f"overall_quality {raw_quality!r} invalid, using yellow")
        quality = QualityRating.YELLOW

    questions: List[CandidateQuestion] = []
    raw_questions = payload.get("generated_questions", payload.get("questions"))
    for item in raw_questions if isinstance(raw_questions, list) else []:
        question, defect = normalize_question(item)
        if defect:
            defects.append(defect)
        if question is not None:
            questions.append(question)

    if defects:
        logger.warning(f"[validation] assessment fallback fields: {'; '.join(defects)}")

    return Assessment(
        gaps=gaps,
        overall_quality=quality,
        rewrite_instructions=_str_list(payload.get("rewrite_instructions")),
        generated_questions=questions,
        origin="fallback" if defects else "parsed",
        defects=defects,
    )


# =============================================================================
# FINAL REVIEW
# =============================================================================

def validate_final_review(raw: Any) -> FinalReview:
    """Critic final output -> FinalReview. Never raises."""
    payload = coerce_payload(raw)
    if payload is None:
        logger.warning("[validation] final review unparseable, accepting with local checks only")
        return FinalReview(origin="fallback", defects=["final review unparseable"])

    defects: List[str] = []
    ready = payload.get("ready")
    if not isinstance(ready, bool):
        defects.append("ready missing, assuming true")
        ready = True

    raw_edits = payload.get("edits")
    if isinstance(raw_edits, str):
        raw_edits = [raw_edits]
    elif raw_edits is not None and not isinstance(raw_edits, list):
        defects.append("edits is not a list")
        raw_edits = []

    edits: List[PolishEdit] = []
    for item in raw_edits or []:
        if isinstance(item, str) and item.strip():
            edits.append(PolishEdit(instruction=item.strip()))
        elif isinstance(item, dict) and (item.get("instruction") or item.get("edit")):
            edits.append(
                PolishEdit(
                    section_id=str(item["section_id"]) if item.get("section_id") else None,
                    instruction=str(item.get("instruction") or item.get("edit")),
                )
            )
        else:
            defects.append("unusable edit dropped")

    raw_forbidden = payload.get("forbidden_matches")
    if isinstance(raw_forbidden, str):
        raw_forbidden = [raw_forbidden]
    elif raw_forbidden is not None and not isinstance(raw_forbidden, list):
        defects.append("forbidden_matches is not a list")

    return FinalReview(
        ready=ready,
        edits=edits,
        forbidden_matches=[m.lower() for m in _str_list(raw_forbidden)],
        origin="fallback" if defects else "parsed",
        defects=defects,
    )


# =============================================================================
# QUALITY GATE
# =============================================================================

def scan_forbidden_phrases(draft: Draft) -> List[Tuple[str, str]]:
    """(section_id, phrase) for every forbidden phrase found."""
    hits = []
    for section in draft.sections:
        lowered = section.content.lower()
        for phrase in FORBIDDEN_PHRASES:
            if phrase in lowered:
                hits.append((section.id.value, phrase))
    return hits


def assess_quality(
    draft: Draft,
    allowed_evidence: set[str],
    critic_forbidden: Optional[List[str]] = None,
) -> QualityReport:
    """Local heuristics for the final gate. Hard violations force a rewrite."""
    violations: List[Violation] = []

    local_hits = scan_forbidden_phrases(draft)
    for section_id, phrase in local_hits:
        violations.append(
            Violation(code="forbidden_phrase", hard=True, section_id=section_id, detail=f"contains '{phrase}'")
        )
    seen_phrases = {phrase for _, phrase in local_hits}
    for phrase in critic_forbidden or []:
        if phrase not in seen_phrases:
            violations.append(Violation(code="forbidden_phrase", hard=True, detail=f"critic flagged '{phrase}'"))

    for section_id, ids in find_unknown_evidence(draft, allowed_evidence).items():
        detail = f"cites evidence outside this run: {', '.join(ids)}"
        malformed = [eid for eid in ids if not is_well_formed(eid)]
        if malformed:
            detail += f" (malformed: {', '.join(malformed)})"
        violations.append(
            Violation(
                code="unknown_evidence",
                hard=True,
                section_id=None if section_id == "evidence_ids_used" else section_id,
                detail=detail,
            )
        )

    citations = section_citations(draft)
    for section in draft.sections:
        if section.placeholder:
            violations.append(
                Violation(code="placeholder_section", hard=False, section_id=section.id.value, detail=FALLBACK_MESSAGE)
            )
            continue
        if not citations.get(section.id.value):
            violations.append(
                Violation(code="no_evidence", hard=True, section_id=section.id.value, detail="no evidence cited")
            )
        words = len(section.content.split())
        if words > MAX_SECTION_WORDS:
            violations.append(
                Violation(
                    code="word_count",
                    hard=False,
                    section_id=section.id.value,
                    detail=f"{words} words (max {MAX_SECTION_WORDS})",
                )
            )

    if any(v.hard for v in violations):
        status = QualityRating.RED
    elif violations:
        status = QualityRating.YELLOW
    else:
        status = QualityRating.GREEN
    return QualityReport(status=status, violations=violations)


__all__ = [
    "FALLBACK_MESSAGE",
    "FORBIDDEN_PHRASES",
    "MAX_SECTION_WORDS",
    "OTHER_OPTION",
    "extract_json_object",
    "coerce_payload",
    "validate_draft",
    "normalize_question",
    "default_assessment",
    "validate_assessment",
    "validate_final_review",
    "scan_forbidden_phrases",
    "assess_quality",
]
