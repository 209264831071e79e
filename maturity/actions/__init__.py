# FILE: maturity/actions/__init__.py
"""Capacity-constrained action planning.

Runs once an interpretation session completes:
- capacity band + cumulative caps from the planning context
- ActionCapacityPlanner bucketing candidates into 6m / 12m / 24m
"""

from .capacity import CapacityConfig, resolve_capacity, capacity_guidance
from .planner import ActionCapacityPlanner
from .schemas import ActionPlan, CandidateAction, CapacityResult, PlanningContext

__all__ = [
    "ActionCapacityPlanner",
    "ActionPlan",
    "CandidateAction",
    "CapacityConfig",
    "CapacityResult",
    "PlanningContext",
    "capacity_guidance",
    "resolve_capacity",
]
