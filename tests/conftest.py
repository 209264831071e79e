# FILE: tests/conftest.py
"""
Pytest configuration for the interpretation service test suite.

Configures:
- pytest-asyncio for async test support
- in-memory SQLite sessions with all interpretation tables
- scripted generator/critic doubles and payload builders (pipeline_kit)
"""
import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest
from sqlalchemy.orm import sessionmaker

from maturity.db import Base, make_engine
from maturity.interpretation import models  # noqa: F401
from maturity.interpretation.config import CollaboratorPolicy, InterpretationConfig, LoopLimits
from maturity.interpretation.orchestrator import PipelineOrchestrator
from maturity.interpretation.schemas import StartRequest
from maturity.interpretation.store import SessionStore

pytest_plugins = ["pytest_asyncio"]


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def db_engine():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return SessionStore(db)


# =============================================================================
# PAYLOAD BUILDERS
# =============================================================================

SECTION_IDS = [
    "execution_snapshot",
    "priority_alignment",
    "strengths_weaknesses",
    "next_level_unlock",
    "capacity_check",
]


def make_diagnostic_input() -> dict:
    return {
        "objectives": [
            {"id": "forecasting", "name": "Forecasting", "score": 35, "importance": 5, "has_critical_failure": True},
            {"id": "budgeting", "name": "Budgeting", "score": 62, "importance": 3},
            {"id": "reporting", "name": "Reporting", "score": 85, "importance": 2},
        ],
        "critical_failures": [{"question_id": "fpa_l1_q01", "objective_id": "forecasting"}],
        "failed_gates": [{"level": 2, "question_ids": ["fpa_l2_q03"]}],
        "aggregate_scores": {"overall": 58},
        "context": {"company_name": "Acme", "industry": "saas"},
    }


def make_draft_payload(cite: str = "obj_forecasting", extra_text: str = "") -> dict:
    sections = []
    for sid in SECTION_IDS:
        content = f"Forecasting still runs on spreadsheets [{cite}] and the level 2 gate is open [gate_l2_failed]."
        if extra_text:
            content = f"{content} {extra_text}"
        sections.append({"id": sid, "title": sid.replace("_", " ").title(), "content": content, "evidence_ids": []})
    return {"sections": sections, "evidence_ids_used": [cite, "gate_l2_failed"], "gaps_marked": []}


def make_assessment(n_questions: int = 0, prefix: str = "R", quality: str = "yellow") -> dict:
    gaps = [
        {
            "gap_id": f"{prefix}-gap-{i}",
            "section": "execution_snapshot",
            "description": f"missing detail {i}",
            "severity": 5 - (i % 5),
            "related_evidence_ids": [],
        }
        for i in range(n_questions)
    ]
    questions = [
        {
            "gap_id": f"{prefix}-gap-{i}",
            "type": "yes_no",
            "text": f"{prefix} question {i}: is this process documented?",
            "rationale": "needed to judge repeatability",
        }
        for i in range(n_questions)
    ]
    return {
        "gaps": gaps,
        "overall_quality": quality,
        "rewrite_instructions": [],
        "generated_questions": questions,
    }


def make_final(ready: bool = True, forbidden=None) -> dict:
    return {"ready": ready, "edits": [], "forbidden_matches": list(forbidden or [])}


# =============================================================================
# COLLABORATOR DOUBLES
# =============================================================================

HANG = object()


async def _resolve(item):
    if isinstance(item, BaseException):
        raise item
    if item is HANG:
        await asyncio.sleep(60)
    return item


def _next(responses: list):
    # The last scripted response repeats forever
    return responses.pop(0) if len(responses) > 1 else responses[0]


class ScriptedGenerator:
    def __init__(self, *responses):
        self.responses = list(responses) or [make_draft_payload()]
        self.calls = []

    async def generate(self, diagnostic_input, prior_answers, context=None):
        self.calls.append({"diagnostic_input": diagnostic_input, "prior_answers": list(prior_answers), "context": context})
        return await _resolve(_next(self.responses))


class ScriptedCritic:
    def __init__(self, assessments=None, finals=None):
        self.assessments = list(assessments or [make_assessment()])
        self.finals = list(finals or [make_final()])
        self.assess_calls = 0
        self.final_calls = 0

    async def assess(self, draft, diagnostic_input):
        self.assess_calls += 1
        return await _resolve(_next(self.assessments))

    async def finalize(self, draft):
        self.final_calls += 1
        return await _resolve(_next(self.finals))


@pytest.fixture
def pipeline_kit():
    return SimpleNamespace(
        Generator=ScriptedGenerator,
        Critic=ScriptedCritic,
        HANG=HANG,
        diagnostic=make_diagnostic_input,
        draft=make_draft_payload,
        assessment=make_assessment,
        final=make_final,
        section_ids=list(SECTION_IDS),
    )


def make_config(**limit_overrides) -> InterpretationConfig:
    limits = dict(max_rounds=3, max_questions_total=5, max_questions_per_round=3, max_ai_calls_per_session=50)
    limits.update(limit_overrides)
    return InterpretationConfig(
        limits=LoopLimits(**limits),
        collaborators=CollaboratorPolicy(timeout_seconds=0.2, retries=1),
    )


@pytest.fixture
def make_orchestrator(store):
    def _make(generator, critic, **limit_overrides):
        return PipelineOrchestrator(store, generator, critic, make_config(**limit_overrides))
    return _make


@pytest.fixture
def start_request():
    def _make(restart: bool = False, candidate_actions=None, planning_context=None):
        return StartRequest.model_validate({
            "restart": restart,
            "diagnostic_input": make_diagnostic_input(),
            "candidate_actions": candidate_actions or [],
            "planning_context": planning_context or {},
        })
    return _make
