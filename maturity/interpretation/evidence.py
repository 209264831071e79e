# FILE: maturity/interpretation/evidence.py
"""
Evidence IDs

Narrative claims cite namespaced tokens such as [obj_forecasting] or
[gate_l2_failed]. This module builds the allowed set for a run from its
diagnostic input and answers, pulls citations out of prose, and
assembles the manifest that ships with the final report.
"""
from __future__ import annotations

import re
from typing import Iterable

from maturity.interpretation.schemas import (
    DiagnosticInput,
    Draft,
    EvidenceEntry,
    ObjectiveScore,
)

# =============================================================================
# NAMESPACES
# =============================================================================

EVIDENCE_PATTERNS: dict[str, re.Pattern] = {
    "obj_": re.compile(r"^obj_[a-z0-9_]+$"),
    "prac_": re.compile(r"^prac_[a-z0-9_]+$"),
    "q_": re.compile(r"^q_[a-z0-9_]+$"),
    "gate_": re.compile(r"^gate_l\d+_(passed|failed)$"),
    "score_": re.compile(r"^score_[a-z0-9_]+$"),
    "critical_": re.compile(r"^critical_[a-z0-9_]+$"),
    "imp_": re.compile(r"^imp_[a-z0-9_]+=\d$"),
    "ctx_": re.compile(r"^ctx_[a-z0-9_]+$"),
    "clarifier_": re.compile(r"^clarifier_round\d+_q\d+$"),
}

EVIDENCE_LABELS: dict[str, str] = {
    "obj_": "Objective Score",
    "prac_": "Practice Score",
    "q_": "Question Response",
    "gate_": "Maturity Gate",
    "score_": "Aggregate Score",
    "critical_": "Critical Question",
    "imp_": "Importance Calibration",
    "ctx_": "Context Field",
    "clarifier_": "Clarifier Response",
}

# Longest prefixes first so "critical_" is not read as something shorter
_NAMESPACES = sorted(EVIDENCE_PATTERNS, key=len, reverse=True)

_CITATION_RE = re.compile(r"\[\[?\s*([A-Za-z]+_[A-Za-z0-9_=]+)\s*\]?\]")


def _slug(value: str) -> str:
    return re.sub(r"_+", "_", re.sub(r"[^a-z0-9]+", "_", str(value).lower())).strip("_")


def namespace_of(evidence_id: str) -> str | None:
    for ns in _NAMESPACES:
        if evidence_id.startswith(ns):
            return ns
    return None


def is_well_formed(evidence_id: str) -> bool:
    ns = namespace_of(evidence_id)
    return ns is not None and bool(EVIDENCE_PATTERNS[ns].match(evidence_id))


# =============================================================================
# BUILDERS
# =============================================================================

def objective_evidence_id(objective_id: str) -> str:
    slug = _slug(objective_id)
    return slug if slug.startswith("obj_") else f"obj_{slug}"


def importance_evidence_id(objective: ObjectiveScore) -> str:
    return f"imp_{_slug(objective.id).removeprefix('obj_')}={objective.importance}"


def critical_evidence_id(question_id: str) -> str:
    return f"critical_{_slug(question_id)}"


def gate_evidence_id(level: int, passed: bool = False) -> str:
    return f"gate_l{level}_{'passed' if passed else 'failed'}"


def score_evidence_id(name: str) -> str:
    return f"score_{_slug(name)}"


def context_evidence_id(field_name: str) -> str:
    return f"ctx_{_slug(field_name)}"


def clarifier_evidence_id(round_number: int, index: int) -> str:
    return f"clarifier_round{round_number}_q{index}"


def build_allowed_evidence(diagnostic: DiagnosticInput, answered_question_ids: Iterable[str] = ()) -> set[str]:
    """Every evidence ID a draft for this run may legitimately cite."""
    allowed: set[str] = set()
    for obj in diagnostic.objectives:
        allowed.add(objective_evidence_id(obj.id))
        if obj.importance is not None:
            allowed.add(importance_evidence_id(obj))
    for cf in diagnostic.critical_failures:
        allowed.add(critical_evidence_id(cf.question_id))
    for gate in diagnostic.failed_gates:
        allowed.add(gate_evidence_id(gate.level))
    for name in diagnostic.aggregate_scores:
        allowed.add(score_evidence_id(name))
    for key, value in diagnostic.context.items():
        if value not in (None, "", [], {}):
            allowed.add(context_evidence_id(key))
    allowed.update(answered_question_ids)
    return allowed


# =============================================================================
# EXTRACTION
# =============================================================================

def extract_citations(text: str) -> list[str]:
    """Namespaced [ids] in order of first appearance. Unknown namespaces are ignored."""
    seen: list[str] = []
    for match in _CITATION_RE.finditer(text or ""):
        token = match.group(1).lower()
        if namespace_of(token) is None:
            continue
        if token not in seen:
            seen.append(token)
    return seen


def section_citations(draft: Draft) -> dict[str, list[str]]:
    """section_id -> cited ids (prose citations plus declared evidence_ids)."""
    out: dict[str, list[str]] = {}
    for section in draft.sections:
        ids = extract_citations(section.content)
        for eid in section.evidence_ids:
            eid = eid.strip().lower()
            if eid and eid not in ids:
                ids.append(eid)
        out[section.id.value] = ids
    return out


def draft_evidence(draft: Draft) -> set[str]:
    cited: set[str] = {e.strip().lower() for e in draft.evidence_ids_used if e.strip()}
    for ids in section_citations(draft).values():
        cited.update(ids)
    return cited


def find_unknown_evidence(draft: Draft, allowed: set[str]) -> dict[str, list[str]]:
    """section_id -> cited ids outside the allowed set. Empty dict when clean."""
    unknown: dict[str, list[str]] = {}
    for section_id, ids in section_citations(draft).items():
        bad = [eid for eid in ids if eid not in allowed]
        if bad:
            unknown[section_id] = bad
    stray = sorted(
        e.strip().lower() for e in draft.evidence_ids_used
        if e.strip() and e.strip().lower() not in allowed
    )
    already = {e for ids in unknown.values() for e in ids}
    stray = [e for e in stray if e not in already]
    if stray:
        unknown["evidence_ids_used"] = stray
    return unknown


def build_manifest(draft: Draft, allowed: set[str]) -> list[EvidenceEntry]:
    """Cited, allowed evidence with the sections that cite it."""
    by_id: dict[str, list[str]] = {}
    for section_id, ids in section_citations(draft).items():
        for eid in ids:
            if eid in allowed:
                by_id.setdefault(eid, []).append(section_id)

    entries = []
    for eid in sorted(by_id):
        ns = namespace_of(eid) or ""
        entries.append(
            EvidenceEntry(
                evidence_id=eid,
                namespace=ns,
                label=EVIDENCE_LABELS.get(ns, "Evidence"),
                cited_in=by_id[eid],
            )
        )
    return entries


__all__ = [
    "EVIDENCE_PATTERNS",
    "EVIDENCE_LABELS",
    "namespace_of",
    "is_well_formed",
    "objective_evidence_id",
    "importance_evidence_id",
    "critical_evidence_id",
    "gate_evidence_id",
    "score_evidence_id",
    "context_evidence_id",
    "clarifier_evidence_id",
    "build_allowed_evidence",
    "extract_citations",
    "section_citations",
    "draft_evidence",
    "find_unknown_evidence",
    "build_manifest",
]
