# FILE: maturity/interpretation/prompts.py
"""
Prompt text for the LLM-backed generator and critic.

Kept apart from the collaborator classes so wording changes don't touch
call plumbing. Every prompt asks for a single JSON object; the
validation layer copes when a model wraps it in prose anyway.
"""
from __future__ import annotations

import json
from typing import Iterable, List, Optional

from maturity.interpretation.schemas import SECTION_ORDER, SECTION_TITLES, DiagnosticInput, Draft
from maturity.interpretation.tonality import build_tonality_instructions, overall_tone
from maturity.interpretation.validation import FALLBACK_MESSAGE, FORBIDDEN_PHRASES, MAX_SECTION_WORDS

_SECTION_LIST = "\n".join(f"- {s.value}: {SECTION_TITLES[s]}" for s in SECTION_ORDER)
_FORBIDDEN = "\n".join(f'- "{p}"' for p in FORBIDDEN_PHRASES)


GENERATOR_SYSTEM_PROMPT = f"""You are a finance operating-model advisor writing the interpretation section of a maturity diagnostic.

Write exactly five sections, in this order:
{_SECTION_LIST}

Rules:
- Every claim cites evidence inline as [evidence_id]. Use ONLY ids from the allowed evidence list.
- At most {MAX_SECTION_WORDS} words per section.
- Follow the tonality instruction given for each objective.
- Speak about the organisation directly. Never use these phrases:
{_FORBIDDEN}
- If the data cannot support a section, write exactly: "{FALLBACK_MESSAGE}"
- Where information is missing, add a short label to gaps_marked instead of guessing.

Return ONE JSON object:
{{"sections": [{{"id": "...", "title": "...", "content": "...", "evidence_ids": ["..."]}}],
  "evidence_ids_used": ["..."], "gaps_marked": ["..."]}}"""


CRITIC_ASSESS_SYSTEM_PROMPT = """You review draft maturity interpretations for evidence grounding and specificity.

Find gaps: claims that lack evidence, context the organisation has not given, or statements too vague to act on.
For each gap give a severity from 1 (cosmetic) to 5 (the section is misleading without it).
Propose clarifying questions only for gaps the organisation itself can answer. Question types:
- yes_no
- mcq (2-4 options; do not add "Other", it is appended automatically)
- free_text

Return ONE JSON object:
{"gaps": [{"gap_id": "...", "section": "...", "description": "...", "severity": 1-5, "related_evidence_ids": ["..."]}],
 "overall_quality": "green" | "yellow" | "red",
 "rewrite_instructions": ["..."],
 "generated_questions": [{"gap_id": "...", "type": "yes_no" | "mcq" | "free_text", "text": "...", "options": ["..."], "rationale": "..."}]}"""


CRITIC_FINAL_SYSTEM_PROMPT = f"""You do the final polish check on a maturity interpretation before it is shown to a client.

Mark ready=false only for hard problems:
- any of these phrases appear:
{_FORBIDDEN}
- a section makes claims without citing evidence

Suggest light edits for anything else; they do not block release.

Return ONE JSON object:
{{"ready": true | false, "edits": [{{"section_id": "...", "instruction": "..."}}], "forbidden_matches": ["..."]}}"""


def build_generator_message(
    diagnostic: DiagnosticInput,
    prior_answers: Iterable[dict],
    allowed_evidence: Iterable[str],
    rewrite_instructions: Optional[List[str]] = None,
) -> str:
    parts = [
        f"Overall tone: {overall_tone(diagnostic.objectives).value}",
        "Tonality per objective:\n" + (build_tonality_instructions(diagnostic.objectives) or "- none"),
        "Diagnostic input:\n" + json.dumps(diagnostic.model_dump(mode="json"), indent=2),
        "Allowed evidence ids:\n" + ", ".join(sorted(allowed_evidence)),
    ]
    answers = list(prior_answers)
    if answers:
        parts.append("Clarifying answers from the organisation (cite by question_id):\n" + json.dumps(answers, indent=2))
    if rewrite_instructions:
        parts.append("Rewrite instructions from review:\n" + "\n".join(f"- {r}" for r in rewrite_instructions))
    return "\n\n".join(parts)


def build_assess_message(draft: Draft, diagnostic: DiagnosticInput) -> str:
    return "\n\n".join([
        "Draft:\n" + json.dumps(draft.model_dump(mode="json", include={"sections", "gaps_marked"}), indent=2),
        "Diagnostic input:\n" + json.dumps(diagnostic.model_dump(mode="json"), indent=2),
    ])


def build_final_message(draft: Draft) -> str:
    return "Draft:\n" + json.dumps(draft.model_dump(mode="json", include={"sections"}), indent=2)


__all__ = [
    "GENERATOR_SYSTEM_PROMPT",
    "CRITIC_ASSESS_SYSTEM_PROMPT",
    "CRITIC_FINAL_SYSTEM_PROMPT",
    "build_generator_message",
    "build_assess_message",
    "build_final_message",
]
