# FILE: tests/test_action_planner.py
"""
Tests for ActionCapacityPlanner bucketing.
"""

import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest
from pydantic import ValidationError

from maturity.actions.planner import ActionCapacityPlanner
from maturity.actions.schemas import (
    CandidateAction,
    CapacityBand,
    PlanningContext,
    SelectionReason,
    Timeline,
)


def _cand(qid, score, objective="forecasting", critical=False, gate=False, level=None, tags=None):
    return CandidateAction(
        question_id=qid,
        objective_id=objective,
        objective_score=score,
        is_critical=critical,
        is_gate_blocker=gate,
        level=level,
        expert_action={"title": f"Fix {qid}", "recommendation": f"Do the work for {qid}."},
        focus_tags=tags or [],
    )


LOW = PlanningContext(capacity_band=CapacityBand.LOW)
MEDIUM = PlanningContext(capacity_band=CapacityBand.MEDIUM)


class TestCriticalPlacement:
    """Test critical actions."""

    def test_three_critical_in_low_band(self):
        """Test three critical actions in a low band, the last flagged over capacity."""
        """Low band caps 6m at 2: all three criticals still land in 6m, one flagged."""
        candidates = [
            _cand("c1", 30, critical=True),
            _cand("c2", 10, critical=True),
            _cand("c3", 20, critical=True),
            _cand("n1", 50),
            _cand("n2", 40),
            _cand("n3", 60),
            _cand("n4", 70),
        ]
        plan = ActionCapacityPlanner().plan(candidates, LOW)

        six = plan.bucket(Timeline.SIX_MONTHS)
        assert [a.question_id for a in six] == ["c2", "c3", "c1"]
        assert all(a.selection_reason == SelectionReason.CRITICAL for a in six)
        assert [a.over_capacity for a in six] == [False, False, True]

        # 12m cumulative cap is 4, 24m is 6
        assert [a.question_id for a in plan.bucket(Timeline.TWELVE_MONTHS)] == ["n2"]
        assert [a.question_id for a in plan.bucket(Timeline.TWENTY_FOUR_MONTHS)] == ["n1", "n3"]
        assert plan.omitted_question_ids == ["n4"]
        assert plan.summary.over_capacity == 1
        assert plan.summary.addresses_critical == 3
        assert plan.summary.omitted == 1

    def test_critical_never_dropped(self):
        """Test critical actions are placed however tight capacity is."""
        candidates = [_cand(f"c{i}", i * 5, critical=True) for i in range(8)]
        plan = ActionCapacityPlanner().plan(candidates, LOW)
        assert len(plan.actions) == 8
        assert all(a.timeline == Timeline.SIX_MONTHS for a in plan.actions)
        assert plan.omitted_question_ids == []

    def test_over_capacity_rationale_mentions_capacity(self):
        """Test over-capacity actions explain themselves."""
        candidates = [_cand(f"c{i}", 10 + i, critical=True) for i in range(3)]
        plan = ActionCapacityPlanner().plan(candidates, LOW)
        flagged = [a for a in plan.actions if a.over_capacity]
        assert len(flagged) == 1
        assert "capacity" in flagged[0].rationale.why_this_timeline


class TestGateBlockers:
    """Test gate blocker placement."""

    def test_gate_blockers_fill_remaining_six_month_room_by_level(self):
        """Test gate blockers take the 6m room left, lowest level first."""
        candidates = [
            _cand("crit", 20, critical=True),
            _cand("g3", 50, gate=True, level=3),
            _cand("g2", 60, gate=True, level=2),
            _cand("other", 5),
        ]
        plan = ActionCapacityPlanner().plan(candidates, MEDIUM)
        six = plan.bucket(Timeline.SIX_MONTHS)
        assert [a.question_id for a in six] == ["crit", "g2", "g3"]
        assert six[1].selection_reason == SelectionReason.GATE_BLOCKER
        assert [a.question_id for a in plan.bucket(Timeline.TWELVE_MONTHS)] == ["other"]
        assert plan.summary.unlocks_gates == [2, 3]

    def test_gate_blocker_overflow_joins_general_pool(self):
        """Test gate blockers that miss 6m compete in the general pool."""
        candidates = [
            _cand("g1", 80, gate=True, level=1),
            _cand("g2", 70, gate=True, level=2),
            _cand("g3", 60, gate=True, level=3),
        ]
        plan = ActionCapacityPlanner().plan(candidates, LOW)
        assert [a.question_id for a in plan.bucket(Timeline.SIX_MONTHS)] == ["g1", "g2"]
        later = plan.bucket(Timeline.TWELVE_MONTHS)
        assert [a.question_id for a in later] == ["g3"]
        assert later[0].selection_reason == SelectionReason.LOW_SCORE
        assert "level 3" in later[0].rationale.expected_impact

    def test_gate_blocker_requires_level(self):
        """Test a gate blocker without a level is rejected."""
        with pytest.raises(ValidationError):
            _cand("g", 50, gate=True)


class TestGeneralPool:
    """Test the general candidate pool."""

    def test_priority_focus_outranks_lower_score(self):
        """Test focus objectives come before lower scores."""
        context = PlanningContext(capacity_band=CapacityBand.LOW, priority_focus=["Reporting"])
        candidates = [
            _cand("weak", 10, objective="budgeting"),
            _cand("focus", 70, objective="reporting"),
            _cand("tagged", 90, objective="budgeting", tags=["reporting"]),
        ]
        plan = ActionCapacityPlanner().plan(candidates, context)
        ordered = [a.question_id for a in plan.actions]
        assert ordered == ["focus", "tagged", "weak"]
        assert plan.actions[0].selection_reason == SelectionReason.PRIORITY_FOCUS
        assert plan.actions[2].selection_reason == SelectionReason.LOW_SCORE

    def test_lowest_scores_first_without_focus(self):
        """Test lower scores come first without focus."""
        candidates = [_cand("a", 60), _cand("b", 20), _cand("c", 40)]
        plan = ActionCapacityPlanner().plan(candidates, MEDIUM)
        assert [a.question_id for a in plan.actions] == ["b", "c", "a"]

    def test_duplicate_question_ids_planned_once(self):
        """Test a question id is planned only once."""
        plan = ActionCapacityPlanner().plan([_cand("a", 10), _cand("a", 20)], MEDIUM)
        assert len(plan.actions) == 1


class TestPlanShape:
    """Test the overall plan."""

    def test_priority_rank_is_contiguous_in_bucket_order(self):
        """Test ranks run 1..n across 6m, 12m, 24m."""
        candidates = [_cand(f"n{i}", 10 * i) for i in range(7)]
        plan = ActionCapacityPlanner().plan(candidates, MEDIUM)
        assert [a.priority_rank for a in plan.actions] == list(range(1, len(plan.actions) + 1))
        order = [a.timeline for a in plan.actions]
        assert order == sorted(order, key=lambda t: ["6m", "12m", "24m"].index(t.value))

    def test_every_action_has_rationale(self):
        """Test every placed action carries a rationale."""
        candidates = [
            _cand("c", 10, critical=True),
            _cand("g", 40, gate=True, level=2),
            _cand("n", 50),
        ]
        plan = ActionCapacityPlanner().plan(candidates, MEDIUM)
        for action in plan.actions:
            assert action.rationale.why_selected
            assert action.rationale.why_this_timeline
            assert action.rationale.expected_impact

    def test_cumulative_caps_hold_for_non_critical(self):
        """Test non-critical actions never exceed cumulative caps."""
        candidates = [_cand(f"n{i}", i) for i in range(20)]
        plan = ActionCapacityPlanner().plan(candidates, MEDIUM)
        assert plan.summary.by_timeline == {"6m": 3, "12m": 2, "24m": 3}
        assert plan.summary.total_actions == 8
        assert len(plan.omitted_question_ids) == 12

    def test_no_candidates_yields_maintain_action(self):
        """Test an empty candidate list yields a maintain action."""
        plan = ActionCapacityPlanner().plan([], MEDIUM)
        assert len(plan.actions) == 1
        action = plan.actions[0]
        assert action.selection_reason == SelectionReason.MAINTAIN
        assert action.timeline == Timeline.TWENTY_FOUR_MONTHS
        assert action.priority_rank == 1

    def test_assumed_capacity_without_context(self):
        """Test planning without context assumes capacity."""
        plan = ActionCapacityPlanner().plan([_cand("a", 10)])
        assert plan.capacity.band == CapacityBand.MEDIUM
        assert plan.capacity.assumed is True
