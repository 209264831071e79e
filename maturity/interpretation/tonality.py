# FILE: maturity/interpretation/tonality.py
"""
Tonality is decided in code and handed to the generator as instructions.
The model follows it; it never picks a tone itself.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from maturity.interpretation.schemas import ObjectiveScore


class Tonality(str, Enum):
    CELEBRATE = "celebrate"
    REFINE = "refine"
    REMEDIATE = "remediate"
    URGENT = "urgent"


@dataclass(frozen=True)
class TonalityRule:
    min_score: float
    has_critical: Optional[bool]  # None = don't care
    tonality: Tonality
    instruction: str

    def matches(self, score: float, has_critical: bool) -> bool:
        if score < self.min_score:
            return False
        return self.has_critical is None or self.has_critical == has_critical


# Evaluated in order, first match wins
TONALITY_RULES: tuple[TonalityRule, ...] = (
    TonalityRule(
        0, True, Tonality.URGENT,
        "CRITICAL GAP EXISTS. Be direct about risk. Do not minimize or soften. State consequences clearly.",
    ),
    TonalityRule(
        80, False, Tonality.CELEBRATE,
        "This is a strength. Validate success briefly. Ask what drives it. Do not dwell, move on.",
    ),
    TonalityRule(
        40, False, Tonality.REFINE,
        "Foundation exists but gaps remain. Focus on specific friction points. Be constructive, not alarming.",
    ),
    TonalityRule(
        0, False, Tonality.REMEDIATE,
        "Significant gaps. Be direct but constructive. Focus on risk mitigation. Do not sugarcoat.",
    ),
)


def tonality_for(score: float, has_critical: bool) -> TonalityRule:
    for rule in TONALITY_RULES:
        if rule.matches(score, has_critical):
            return rule
    return TONALITY_RULES[-1]


def build_tonality_instructions(objectives: list[ObjectiveScore]) -> str:
    lines = []
    for obj in objectives:
        rule = tonality_for(obj.score, obj.has_critical_failure)
        lines.append(f"- {obj.name} ({obj.score:.0f}%): {rule.instruction}")
    return "\n".join(lines)


def overall_tone(objectives: list[ObjectiveScore]) -> Tonality:
    if any(obj.has_critical_failure for obj in objectives):
        return Tonality.URGENT
    if not objectives:
        return Tonality.REFINE
    avg = sum(obj.score for obj in objectives) / len(objectives)
    if avg >= 80:
        return Tonality.CELEBRATE
    if avg >= 40:
        return Tonality.REFINE
    return Tonality.REMEDIATE


__all__ = [
    "Tonality",
    "TonalityRule",
    "TONALITY_RULES",
    "tonality_for",
    "build_tonality_instructions",
    "overall_tone",
]
