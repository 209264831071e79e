# FILE: maturity/actions/schemas.py
"""
Action planning - Schemas

Candidate remediation items come in from the scoring collaborator; the
planner turns them into a bucketed, capacity-bounded ActionPlan.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# =============================================================================
# ENUMS
# =============================================================================

class Timeline(str, Enum):
    """Plan buckets, in fill order."""
    SIX_MONTHS = "6m"
    TWELVE_MONTHS = "12m"
    TWENTY_FOUR_MONTHS = "24m"


TIMELINE_ORDER: tuple[Timeline, ...] = (
    Timeline.SIX_MONTHS,
    Timeline.TWELVE_MONTHS,
    Timeline.TWENTY_FOUR_MONTHS,
)


class CapacityBand(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Bandwidth(str, Enum):
    """How much time the team says it can give to improvement work."""
    MINIMAL = "minimal"
    LIMITED = "limited"
    MODERATE = "moderate"
    SIGNIFICANT = "significant"


class SelectionReason(str, Enum):
    """Which planner rule placed an action."""
    CRITICAL = "critical"
    GATE_BLOCKER = "gate_blocker"
    PRIORITY_FOCUS = "priority_focus"
    LOW_SCORE = "low_score"
    MAINTAIN = "maintain"


# =============================================================================
# INPUTS
# =============================================================================

class ExpertAction(BaseModel):
    title: str
    recommendation: str = ""


class CandidateAction(BaseModel):
    """
    One remediation candidate derived from a failed diagnostic question.

    Read-only input to the planner. `level` is required when the
    candidate is a gate blocker.
    """
    question_id: str
    objective_id: str
    objective_score: float = Field(ge=0, le=100)
    is_critical: bool = False
    is_gate_blocker: bool = False
    level: Optional[int] = Field(default=None, ge=1)
    expert_action: ExpertAction
    focus_tags: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _gate_blocker_needs_level(self):
        if self.is_gate_blocker and self.level is None:
            raise ValueError(f"gate blocker {self.question_id} must declare a level")
        return self


class PlanningContext(BaseModel):
    """What the caller told us about the team and its priorities."""
    team_size: Optional[int] = Field(default=None, ge=1)
    bandwidth: Optional[Bandwidth] = None
    capacity_band: Optional[CapacityBand] = None
    priority_focus: list[str] = Field(default_factory=list)
    target_level: Optional[int] = Field(default=None, ge=1)

    @field_validator("priority_focus", mode="before")
    @classmethod
    def _normalize_focus(cls, v):
        if v is None:
            return []
        return [str(tag).strip().lower() for tag in v if str(tag).strip()]


# =============================================================================
# OUTPUTS
# =============================================================================

class CapacityResult(BaseModel):
    """
    Capacity band plus cumulative caps.

    The 12m cap bounds the 6m and 12m buckets together; the 24m cap
    bounds the whole plan.
    """
    band: CapacityBand
    assumed: bool = False
    max_actions: dict[str, int]

    @model_validator(mode="after")
    def _caps_are_monotone(self):
        caps = [self.max_actions.get(t.value) for t in TIMELINE_ORDER]
        if any(c is None for c in caps):
            raise ValueError(f"max_actions must define {[t.value for t in TIMELINE_ORDER]}")
        if any(c < 0 for c in caps) or not (caps[0] <= caps[1] <= caps[2]):
            raise ValueError(f"max_actions must be non-negative and non-decreasing, got {self.max_actions}")
        return self

    def cap_for(self, timeline: Timeline) -> int:
        return self.max_actions[timeline.value]


class ActionRationale(BaseModel):
    why_selected: str = Field(min_length=1)
    why_this_timeline: str = Field(min_length=1)
    expected_impact: str = Field(min_length=1)


class PlannedAction(BaseModel):
    question_id: Optional[str] = None
    objective_id: Optional[str] = None
    title: str
    recommendation: str = ""
    timeline: Timeline
    priority_rank: int = Field(ge=1)
    selection_reason: SelectionReason
    is_critical: bool = False
    is_gate_blocker: bool = False
    level: Optional[int] = None
    over_capacity: bool = False
    rationale: ActionRationale


class PlanSummary(BaseModel):
    total_actions: int = 0
    by_timeline: dict[str, int] = Field(default_factory=dict)
    addresses_critical: int = 0
    unlocks_gates: list[int] = Field(default_factory=list)
    over_capacity: int = 0
    omitted: int = 0


class ActionPlan(BaseModel):
    capacity: CapacityResult
    actions: list[PlannedAction] = Field(default_factory=list)
    summary: PlanSummary = Field(default_factory=PlanSummary)
    omitted_question_ids: list[str] = Field(default_factory=list)

    def bucket(self, timeline: Timeline) -> list[PlannedAction]:
        return [a for a in self.actions if a.timeline == timeline]


__all__ = [
    "Timeline",
    "TIMELINE_ORDER",
    "CapacityBand",
    "Bandwidth",
    "SelectionReason",
    "ExpertAction",
    "CandidateAction",
    "PlanningContext",
    "CapacityResult",
    "ActionRationale",
    "PlannedAction",
    "PlanSummary",
    "ActionPlan",
]
