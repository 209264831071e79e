# FILE: maturity/actions/capacity.py
"""
Capacity band resolution.

Team size x bandwidth -> band -> cumulative action caps per timeline.
An explicit band from the caller always wins. When inputs are missing we
fall back to a medium-sized team with moderate bandwidth and mark the
result as assumed so the report can say so.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from maturity.actions.schemas import (
    Bandwidth,
    CapacityBand,
    CapacityResult,
    PlanningContext,
    TIMELINE_ORDER,
)

logger = logging.getLogger(__name__)


def _default_matrix() -> Dict[str, Dict[Bandwidth, CapacityBand]]:
    low, medium, high = CapacityBand.LOW, CapacityBand.MEDIUM, CapacityBand.HIGH
    return {
        "small": {
            Bandwidth.MINIMAL: low,
            Bandwidth.LIMITED: low,
            Bandwidth.MODERATE: medium,
            Bandwidth.SIGNIFICANT: medium,
        },
        "medium": {
            Bandwidth.MINIMAL: low,
            Bandwidth.LIMITED: medium,
            Bandwidth.MODERATE: medium,
            Bandwidth.SIGNIFICANT: high,
        },
        "large": {
            Bandwidth.MINIMAL: medium,
            Bandwidth.LIMITED: medium,
            Bandwidth.MODERATE: high,
            Bandwidth.SIGNIFICANT: high,
        },
    }


def _default_caps() -> Dict[CapacityBand, Dict[str, int]]:
    return {
        CapacityBand.LOW: {"6m": 2, "12m": 4, "24m": 6},
        CapacityBand.MEDIUM: {"6m": 3, "12m": 5, "24m": 8},
        CapacityBand.HIGH: {"6m": 5, "12m": 8, "24m": 12},
    }


@dataclass(frozen=True)
class CapacityConfig:
    """
    Capacity sizing knobs.

    Caps are cumulative: the 12m number bounds 6m + 12m together.
    """
    small_team_max: int = 5      # <= 5 people
    medium_team_max: int = 15    # <= 15 people, anything above is large

    default_team_category: str = "medium"
    default_bandwidth: Bandwidth = Bandwidth.MODERATE

    matrix: Dict[str, Dict[Bandwidth, CapacityBand]] = field(default_factory=_default_matrix)
    max_actions: Dict[CapacityBand, Dict[str, int]] = field(default_factory=_default_caps)

    def __post_init__(self):
        if not 0 < self.small_team_max < self.medium_team_max:
            raise ValueError("team size thresholds must satisfy 0 < small < medium")
        for band in CapacityBand:
            caps = self.max_actions.get(band)
            if caps is None:
                raise ValueError(f"no caps configured for band '{band.value}'")
            ordered = [caps[t.value] for t in TIMELINE_ORDER]
            if not ordered[0] <= ordered[1] <= ordered[2]:
                raise ValueError(f"caps for band '{band.value}' must be non-decreasing: {caps}")


DEFAULT_CAPACITY_CONFIG = CapacityConfig()


def team_size_category(team_size: int, config: CapacityConfig = DEFAULT_CAPACITY_CONFIG) -> str:
    if team_size <= config.small_team_max:
        return "small"
    if team_size <= config.medium_team_max:
        return "medium"
    return "large"


def resolve_capacity(
    context: Optional[PlanningContext],
    config: CapacityConfig = DEFAULT_CAPACITY_CONFIG,
) -> CapacityResult:
    """Work out the capacity band and caps for a planning context."""
    context = context or PlanningContext()

    if context.capacity_band is not None:
        band = context.capacity_band
        assumed = False
    else:
        assumed = context.team_size is None or context.bandwidth is None
        category = (
            team_size_category(context.team_size, config)
            if context.team_size is not None
            else config.default_team_category
        )
        bandwidth = context.bandwidth or config.default_bandwidth
        band = config.matrix[category][bandwidth]

    if assumed:
        logger.info(
            f"[capacity] band assumed as {band.value} "
            f"(team_size={context.team_size}, bandwidth={context.bandwidth})"
        )

    return CapacityResult(
        band=band,
        assumed=assumed,
        max_actions=dict(config.max_actions[band]),
    )


_GUIDANCE = {
    CapacityBand.LOW: (
        "Team capacity is tight. Focus on one or two critical items at a time "
        "and sequence the rest."
    ),
    CapacityBand.MEDIUM: (
        "Team can run a few initiatives in parallel. Pair quick wins with one "
        "structural change per horizon."
    ),
    CapacityBand.HIGH: (
        "Team can absorb a broad programme. Keep ownership explicit so parallel "
        "work does not stall."
    ),
}


def capacity_guidance(result: CapacityResult) -> str:
    text = _GUIDANCE[result.band]
    if result.assumed:
        text += " Capacity was estimated; confirm team size and bandwidth to tighten the plan."
    return text


__all__ = [
    "CapacityConfig",
    "DEFAULT_CAPACITY_CONFIG",
    "team_size_category",
    "resolve_capacity",
    "capacity_guidance",
]
