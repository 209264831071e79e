# FILE: maturity/interpretation/prioritizer.py
"""GapPrioritizer

Ranks critic gaps by severity (descending). Ties keep the critic's order:
Python's sort is stable, so identical critic responses always rank
identically.

A gap whose related evidence is already fully cited in the draft points
at redundant rather than missing information and sinks below every
non-redundant gap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List

from maturity.interpretation.schemas import CandidateQuestion, Gap

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankedGap:
    gap: Gap
    rank: int
    redundant: bool


class GapPrioritizer:
    def rank(self, gaps: List[Gap], draft_evidence: Iterable[str]) -> List[RankedGap]:
        present = {e.lower() for e in draft_evidence}

        def is_redundant(gap: Gap) -> bool:
            related = {e.lower() for e in gap.related_evidence_ids}
            return bool(related) and related <= present

        flagged = [(gap, is_redundant(gap)) for gap in gaps]
        ordered = sorted(flagged, key=lambda pair: (pair[1], -pair[0].severity))

        redundant = sum(1 for _, r in ordered if r)
        if redundant:
            logger.info(f"[prioritizer] {redundant} of {len(gaps)} gaps deprioritized as redundant")

        return [RankedGap(gap=g, rank=i, redundant=r) for i, (g, r) in enumerate(ordered, start=1)]

    def order_questions(
        self,
        questions: List[CandidateQuestion],
        ranked_gaps: List[RankedGap],
    ) -> List[CandidateQuestion]:
        """Questions in the order of the gaps they came from.

        Questions pointing at an unknown gap go last, in critic order.
        """
        position = {rg.gap.gap_id: rg.rank for rg in ranked_gaps}
        tail = len(ranked_gaps) + 1
        return sorted(questions, key=lambda q: position.get(q.gap_id, tail) if q.gap_id else tail)


__all__ = ["RankedGap", "GapPrioritizer"]
