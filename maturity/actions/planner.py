# FILE: maturity/actions/planner.py
"""
ActionCapacityPlanner

Turns CandidateAction[] into a bounded, bucketed ActionPlan once the
narrative pipeline has completed.

Placement order (strict):
1. Critical candidates -> 6m. Overflow past the 6m cap is still placed
   and flagged over_capacity. Critical items are never dropped.
2. Gate blockers fill what is left of 6m, lowest level first.
3. Everything else (including gate blockers that did not fit) fills
   6m -> 12m -> 24m: priority-focus matches first, then ascending
   objective_score.
4. Whatever does not fit is omitted.

Caps are cumulative, so placing into a bucket needs room in that bucket's
cap and in every later cap.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from maturity.actions.capacity import (
    CapacityConfig,
    DEFAULT_CAPACITY_CONFIG,
    resolve_capacity,
)
from maturity.actions.schemas import (
    ActionPlan,
    ActionRationale,
    CandidateAction,
    CapacityResult,
    PlannedAction,
    PlanningContext,
    PlanSummary,
    SelectionReason,
    Timeline,
    TIMELINE_ORDER,
)

logger = logging.getLogger(__name__)

_HORIZON_LABELS = {
    Timeline.SIX_MONTHS: "6-month",
    Timeline.TWELVE_MONTHS: "12-month",
    Timeline.TWENTY_FOUR_MONTHS: "24-month",
}


class _Buckets:
    """Running counts per timeline, checked against cumulative caps."""

    def __init__(self, capacity: CapacityResult):
        self.capacity = capacity
        self.counts: Dict[Timeline, int] = {t: 0 for t in TIMELINE_ORDER}

    def cumulative(self, timeline: Timeline) -> int:
        idx = TIMELINE_ORDER.index(timeline)
        return sum(self.counts[t] for t in TIMELINE_ORDER[: idx + 1])

    def has_room(self, timeline: Timeline) -> bool:
        idx = TIMELINE_ORDER.index(timeline)
        return all(
            self.cumulative(t) + 1 <= self.capacity.cap_for(t)
            for t in TIMELINE_ORDER[idx:]
        )

    def first_with_room(self) -> Optional[Timeline]:
        for t in TIMELINE_ORDER:
            if self.has_room(t):
                return t
        return None

    def add(self, timeline: Timeline) -> None:
        self.counts[timeline] += 1


class ActionCapacityPlanner:
    def __init__(self, capacity_config: CapacityConfig = DEFAULT_CAPACITY_CONFIG):
        self.capacity_config = capacity_config

    def plan(
        self,
        candidates: Iterable[CandidateAction],
        context: Optional[PlanningContext] = None,
        capacity: Optional[CapacityResult] = None,
    ) -> ActionPlan:
        context = context or PlanningContext()
        capacity = capacity or resolve_capacity(context, self.capacity_config)
        unique = _dedupe(candidates)

        if not unique:
            logger.info("[planner] no candidates, emitting maintain action")
            actions = [_maintain_action()]
            return ActionPlan(capacity=capacity, actions=actions, summary=_summarize(actions, 0))

        buckets = _Buckets(capacity)
        placed: List[Tuple[Timeline, CandidateAction, SelectionReason, bool]] = []
        placed_ids: set[str] = set()

        # 1. critical, worst score first so in-cap slots go to the weakest objectives
        critical = sorted((c for c in unique if c.is_critical), key=lambda c: c.objective_score)
        for cand in critical:
            over = not buckets.has_room(Timeline.SIX_MONTHS)
            buckets.add(Timeline.SIX_MONTHS)
            placed.append((Timeline.SIX_MONTHS, cand, SelectionReason.CRITICAL, over))
            placed_ids.add(cand.question_id)
        if len(critical) > capacity.cap_for(Timeline.SIX_MONTHS):
            logger.warning(
                f"[planner] {len(critical)} critical actions exceed 6m cap of "
                f"{capacity.cap_for(Timeline.SIX_MONTHS)}; overflow flagged"
            )

        # 2. gate blockers into whatever 6m room is left
        gate_blockers = sorted(
            (c for c in unique if c.is_gate_blocker and c.question_id not in placed_ids),
            key=lambda c: c.level,
        )
        for cand in gate_blockers:
            if not buckets.has_room(Timeline.SIX_MONTHS):
                break
            buckets.add(Timeline.SIX_MONTHS)
            placed.append((Timeline.SIX_MONTHS, cand, SelectionReason.GATE_BLOCKER, False))
            placed_ids.add(cand.question_id)

        # 3. focus matches, then worst-scoring objectives, across all buckets
        focus = set(context.priority_focus)
        remaining = [c for c in unique if c.question_id not in placed_ids]
        remaining.sort(key=lambda c: (not _matches_focus(c, focus), c.objective_score))

        omitted: List[str] = []
        for cand in remaining:
            timeline = buckets.first_with_room()
            if timeline is None:
                omitted.append(cand.question_id)
                continue
            reason = SelectionReason.PRIORITY_FOCUS if _matches_focus(cand, focus) else SelectionReason.LOW_SCORE
            buckets.add(timeline)
            placed.append((timeline, cand, reason, False))
            placed_ids.add(cand.question_id)

        actions = _rank(placed, buckets, focus)
        if omitted:
            logger.info(f"[planner] {len(omitted)} candidates omitted at capacity (band={capacity.band.value})")

        return ActionPlan(
            capacity=capacity,
            actions=actions,
            summary=_summarize(actions, len(omitted)),
            omitted_question_ids=omitted,
        )


# =============================================================================
# HELPERS
# =============================================================================

def _dedupe(candidates: Iterable[CandidateAction]) -> List[CandidateAction]:
    seen: set[str] = set()
    out: List[CandidateAction] = []
    for cand in candidates:
        if cand.question_id in seen:
            continue
        seen.add(cand.question_id)
        out.append(cand)
    return out


def _matches_focus(cand: CandidateAction, focus: set[str]) -> bool:
    if not focus:
        return False
    tags = {t.strip().lower() for t in cand.focus_tags}
    return bool(tags & focus) or cand.objective_id.lower() in focus


def _rank(
    placed: List[Tuple[Timeline, CandidateAction, SelectionReason, bool]],
    buckets: _Buckets,
    focus: set[str],
) -> List[PlannedAction]:
    # sorted() is stable, so placement order survives within a bucket
    ordered = sorted(placed, key=lambda p: TIMELINE_ORDER.index(p[0]))
    actions: List[PlannedAction] = []
    for rank, (timeline, cand, reason, over) in enumerate(ordered, start=1):
        actions.append(
            PlannedAction(
                question_id=cand.question_id,
                objective_id=cand.objective_id,
                title=cand.expert_action.title,
                recommendation=cand.expert_action.recommendation,
                timeline=timeline,
                priority_rank=rank,
                selection_reason=reason,
                is_critical=cand.is_critical,
                is_gate_blocker=cand.is_gate_blocker,
                level=cand.level,
                over_capacity=over,
                rationale=_rationale(cand, timeline, reason, over, buckets.capacity, focus),
            )
        )
    return actions


def _rationale(
    cand: CandidateAction,
    timeline: Timeline,
    reason: SelectionReason,
    over: bool,
    capacity: CapacityResult,
    focus: set[str],
) -> ActionRationale:
    score = f"{cand.objective_score:.0f}/100"
    horizon = _HORIZON_LABELS[timeline]

    if reason == SelectionReason.CRITICAL:
        why_selected = (
            f"Critical failure on {cand.objective_id}; it caps the maturity result "
            f"until it is fixed."
        )
        why_timeline = "Critical failures are scheduled in the first six months regardless of score."
        if over:
            why_timeline += (
                f" This exceeds the 6-month capacity of {capacity.cap_for(Timeline.SIX_MONTHS)}"
                f" for a {capacity.band.value} capacity team; resource it explicitly."
            )
        impact = f"Removes a critical failure on {cand.objective_id} and lifts the cap it places on the overall result."
    elif reason == SelectionReason.GATE_BLOCKER:
        why_selected = f"Blocks the level {cand.level} gate; it must clear before level {cand.level} can be awarded."
        why_timeline = "Gate blockers take the first-horizon capacity left after critical items, nearest level first."
        impact = f"Unlocks progression to level {cand.level}."
    else:
        if reason == SelectionReason.PRIORITY_FOCUS:
            matched = sorted({t.lower() for t in cand.focus_tags} & focus) or [cand.objective_id]
            why_selected = f"Matches the stated priority focus ({', '.join(matched)}); {cand.objective_id} scores {score}."
        else:
            why_selected = f"{cand.objective_id} scores {score}, among the weakest objectives still open."
        if timeline == Timeline.SIX_MONTHS:
            why_timeline = "There was first-horizon room left after critical items and gate blockers."
        else:
            why_timeline = f"Earlier horizons were at capacity, so this lands in the {horizon} horizon."
        if cand.is_gate_blocker:
            impact = f"Unlocks progression to level {cand.level} and raises {cand.objective_id} from {score}."
        else:
            impact = f"Raises {cand.objective_id} from {score}."

    if cand.expert_action.recommendation:
        impact = f"{impact} {cand.expert_action.recommendation}"

    return ActionRationale(
        why_selected=why_selected,
        why_this_timeline=why_timeline,
        expected_impact=impact,
    )


def _maintain_action() -> PlannedAction:
    return PlannedAction(
        title="Maintain current practices",
        recommendation="Re-run the diagnostic in 12 months to confirm results hold.",
        timeline=Timeline.TWENTY_FOUR_MONTHS,
        priority_rank=1,
        selection_reason=SelectionReason.MAINTAIN,
        rationale=ActionRationale(
            why_selected="No failed diagnostic items produced remediation candidates.",
            why_this_timeline="Nothing needs near-term action, so this sits in the longest horizon.",
            expected_impact="Keeps current maturity from eroding as the team and processes change.",
        ),
    )


def _summarize(actions: List[PlannedAction], omitted: int) -> PlanSummary:
    by_timeline = {t.value: 0 for t in TIMELINE_ORDER}
    for a in actions:
        by_timeline[a.timeline.value] += 1
    gates = sorted({a.level for a in actions if a.is_gate_blocker and a.level is not None})
    return PlanSummary(
        total_actions=len(actions),
        by_timeline=by_timeline,
        addresses_critical=sum(1 for a in actions if a.is_critical),
        unlocks_gates=gates,
        over_capacity=sum(1 for a in actions if a.over_capacity),
        omitted=omitted,
    )


__all__ = ["ActionCapacityPlanner"]
