# FILE: maturity/interpretation/budget.py
"""QuestionBudgetAllocator - circuit breaker on clarifying questions.

Per round:
    remaining = max_questions_total - total_questions_asked
    cap = min(max_questions_per_round, remaining)

The first `cap` ranked candidates are kept and the rest dropped (not
deferred). Once current_round >= max_rounds nothing is kept, whatever the
critic says, which routes the pipeline to finalizing.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List

from maturity.interpretation.config import LoopLimits
from maturity.interpretation.schemas import CandidateQuestion

logger = logging.getLogger(__name__)


class AllocationOutcome(str, Enum):
    """Why the allocator returned what it did."""
    ASK = "ask"                            # At least one question kept
    ROUND_LIMIT = "round_limit"            # current_round >= max_rounds
    BUDGET_EXHAUSTED = "budget_exhausted"  # Total question budget spent
    NO_CANDIDATES = "no_candidates"        # Critic proposed nothing new


def question_signature(text: str) -> str:
    """Stable signature for dedupe across rounds (whitespace/case-insensitive)."""
    q_norm = " ".join(text.lower().split())
    return hashlib.sha256(q_norm.encode()).hexdigest()[:16]


@dataclass
class Allocation:
    outcome: AllocationOutcome
    cap: int
    kept: List[CandidateQuestion] = field(default_factory=list)
    dropped: List[CandidateQuestion] = field(default_factory=list)
    duplicates: int = 0

    @property
    def should_ask(self) -> bool:
        return bool(self.kept)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "cap": self.cap,
            "kept": len(self.kept),
            "dropped": len(self.dropped),
            "duplicates": self.duplicates,
        }


class QuestionBudgetAllocator:
    def __init__(self, limits: LoopLimits):
        self.limits = limits

    def remaining(self, total_questions_asked: int) -> int:
        return max(0, self.limits.max_questions_total - total_questions_asked)

    def round_cap(self, total_questions_asked: int) -> int:
        return min(self.limits.max_questions_per_round, self.remaining(total_questions_asked))

    def allocate(
        self,
        ranked_candidates: List[CandidateQuestion],
        total_questions_asked: int,
        current_round: int,
        asked_signatures: Iterable[str] = (),
    ) -> Allocation:
        """Keep the first `cap` candidates that were not asked before.

        `ranked_candidates` must already be in priority order.
        """
        if current_round >= self.limits.max_rounds:
            logger.info(
                f"[budget] round limit reached (round={current_round}, max={self.limits.max_rounds}); "
                f"dropping {len(ranked_candidates)} candidates"
            )
            return Allocation(AllocationOutcome.ROUND_LIMIT, cap=0, dropped=list(ranked_candidates))

        cap = self.round_cap(total_questions_asked)

        seen = set(asked_signatures)
        fresh: List[CandidateQuestion] = []
        duplicates = 0
        for q in ranked_candidates:
            sig = question_signature(q.text)
            if sig in seen:
                duplicates += 1
                continue
            seen.add(sig)
            fresh.append(q)

        if duplicates:
            logger.info(f"[budget] dedupe: {duplicates} candidate(s) already asked")

        if cap <= 0:
            return Allocation(AllocationOutcome.BUDGET_EXHAUSTED, cap=0, dropped=fresh, duplicates=duplicates)
        if not fresh:
            return Allocation(AllocationOutcome.NO_CANDIDATES, cap=cap, duplicates=duplicates)

        kept, dropped = fresh[:cap], fresh[cap:]
        if dropped:
            logger.info(f"[budget] cap={cap} kept={len(kept)} dropped={len(dropped)}")
        return Allocation(AllocationOutcome.ASK, cap=cap, kept=kept, dropped=dropped, duplicates=duplicates)


__all__ = [
    "AllocationOutcome",
    "Allocation",
    "QuestionBudgetAllocator",
    "question_signature",
]
