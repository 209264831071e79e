# FILE: maturity/interpretation/schemas.py
"""
Interpretation pipeline - Schemas

Three groups:
- diagnostic input (immutable per run, supplied by the scoring side)
- collaborator responses, validated at the boundary into typed objects
  tagged with their origin ("parsed" or "fallback")
- caller-facing request/response envelopes
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from maturity.actions.schemas import ActionPlan, CandidateAction, PlanningContext


# =============================================================================
# ENUMS
# =============================================================================

class SessionStatus(str, Enum):
    """Interpretation session lifecycle."""
    PENDING = "pending"
    GENERATING = "generating"
    ASSESSED = "assessed"
    AWAITING_USER = "awaiting_user"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETE, SessionStatus.FAILED})
IN_FLIGHT_STATUSES = frozenset({
    SessionStatus.GENERATING,
    SessionStatus.ASSESSED,
    SessionStatus.FINALIZING,
})


class QuestionType(str, Enum):
    YES_NO = "yes_no"
    MCQ = "mcq"
    FREE_TEXT = "free_text"


class AnswerConfidence(str, Enum):
    NORMAL = "normal"
    LOW = "low"


class QualityRating(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class SectionId(str, Enum):
    EXECUTION_SNAPSHOT = "execution_snapshot"
    PRIORITY_ALIGNMENT = "priority_alignment"
    STRENGTHS_WEAKNESSES = "strengths_weaknesses"
    NEXT_LEVEL_UNLOCK = "next_level_unlock"
    CAPACITY_CHECK = "capacity_check"


SECTION_ORDER: tuple[SectionId, ...] = tuple(SectionId)

SECTION_TITLES: dict[SectionId, str] = {
    SectionId.EXECUTION_SNAPSHOT: "Execution Snapshot",
    SectionId.PRIORITY_ALIGNMENT: "Priority Alignment",
    SectionId.STRENGTHS_WEAKNESSES: "Strengths and Weaknesses",
    SectionId.NEXT_LEVEL_UNLOCK: "Next Level Unlock",
    SectionId.CAPACITY_CHECK: "Capacity Check",
}


class StepType(str, Enum):
    GENERATE = "generate"
    ASSESS = "assess"
    FINALIZE = "finalize"
    PLAN = "plan"


class StepOutcome(str, Enum):
    OK = "ok"
    FALLBACK = "fallback"
    TIMEOUT = "timeout"
    ERROR = "error"


# =============================================================================
# DIAGNOSTIC INPUT
# =============================================================================

class ObjectiveScore(BaseModel):
    id: str
    name: str
    score: float = Field(ge=0, le=100)
    importance: Optional[int] = Field(default=None, ge=1, le=5)
    has_critical_failure: bool = False


class CriticalFailure(BaseModel):
    question_id: str
    objective_id: Optional[str] = None
    text: str = ""
    level: Optional[int] = None


class FailedGate(BaseModel):
    level: int = Field(ge=1)
    question_ids: list[str] = Field(default_factory=list)


class DiagnosticInput(BaseModel):
    """Immutable input to one pipeline run."""
    objectives: list[ObjectiveScore] = Field(default_factory=list)
    critical_failures: list[CriticalFailure] = Field(default_factory=list)
    failed_gates: list[FailedGate] = Field(default_factory=list)
    aggregate_scores: dict[str, float] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# COLLABORATOR RESPONSES (validated)
# =============================================================================

Origin = Literal["parsed", "fallback"]


class DraftSection(BaseModel):
    id: SectionId
    title: str
    content: str = ""
    evidence_ids: list[str] = Field(default_factory=list)
    placeholder: bool = False


class Draft(BaseModel):
    sections: list[DraftSection]
    evidence_ids_used: list[str] = Field(default_factory=list)
    gaps_marked: list[str] = Field(default_factory=list)
    origin: Origin = "parsed"
    defects: list[str] = Field(default_factory=list)

    def section(self, section_id: SectionId) -> Optional[DraftSection]:
        for s in self.sections:
            if s.id == section_id:
                return s
        return None


class Gap(BaseModel):
    gap_id: str
    section: Optional[str] = None
    description: str = ""
    severity: int = Field(default=3, ge=1, le=5)
    related_evidence_ids: list[str] = Field(default_factory=list)


class CandidateQuestion(BaseModel):
    """A question the critic proposes; not yet asked."""
    gap_id: Optional[str] = None
    type: QuestionType
    text: str
    options: list[str] = Field(default_factory=list)
    rationale: str = ""


class Assessment(BaseModel):
    gaps: list[Gap] = Field(default_factory=list)
    overall_quality: QualityRating = QualityRating.YELLOW
    rewrite_instructions: list[str] = Field(default_factory=list)
    generated_questions: list[CandidateQuestion] = Field(default_factory=list)
    origin: Origin = "parsed"
    defects: list[str] = Field(default_factory=list)


class PolishEdit(BaseModel):
    section_id: Optional[str] = None
    instruction: str


class FinalReview(BaseModel):
    ready: bool = True
    edits: list[PolishEdit] = Field(default_factory=list)
    forbidden_matches: list[str] = Field(default_factory=list)
    origin: Origin = "parsed"
    defects: list[str] = Field(default_factory=list)


# =============================================================================
# REPORT
# =============================================================================

class Violation(BaseModel):
    code: str
    hard: bool
    detail: str
    section_id: Optional[str] = None


class QualityReport(BaseModel):
    status: QualityRating
    violations: list[Violation] = Field(default_factory=list)

    @property
    def hard_violations(self) -> list[Violation]:
        return [v for v in self.violations if v.hard]


class EvidenceEntry(BaseModel):
    evidence_id: str
    namespace: str
    label: str
    cited_in: list[str] = Field(default_factory=list)


class InterpretationReport(BaseModel):
    sections: list[DraftSection]
    evidence_manifest: list[EvidenceEntry] = Field(default_factory=list)
    quality: QualityReport
    quality_compromised: bool = False
    overall_tone: str
    polish_edits: list[PolishEdit] = Field(default_factory=list)
    rounds_used: int = 0
    questions_answered: int = 0
    action_plan: ActionPlan
    capacity_guidance: str = ""
    generated_at: datetime


# =============================================================================
# API ENVELOPES
# =============================================================================

class StartRequest(BaseModel):
    restart: bool = False
    diagnostic_input: DiagnosticInput
    candidate_actions: list[CandidateAction] = Field(default_factory=list)
    planning_context: PlanningContext = Field(default_factory=PlanningContext)


class AnswerIn(BaseModel):
    question_id: str
    answer: Union[bool, str]
    time_to_answer_ms: Optional[int] = Field(default=None, ge=0)

    @field_validator("answer")
    @classmethod
    def _non_empty(cls, v):
        if isinstance(v, str) and not v.strip():
            raise ValueError("answer cannot be empty")
        return v


class AnswerRequest(BaseModel):
    answers: list[AnswerIn] = Field(min_length=1)
    expected_round: Optional[int] = Field(default=None, ge=0)


class QuestionOut(BaseModel):
    question_id: str
    gap_id: Optional[str] = None
    round_number: int
    type: QuestionType
    text: str
    options: list[str] = Field(default_factory=list)
    rationale: str = ""


class Progress(BaseModel):
    step: str
    steps_completed: int
    steps_total: int
    estimated_seconds_remaining: int


class SessionView(BaseModel):
    """What callers see. Reports only on complete, errors only on failed."""
    session_id: str
    run_id: str
    status: SessionStatus
    current_round: int
    total_questions_asked: int
    questions: Optional[list[QuestionOut]] = None
    report: Optional[InterpretationReport] = None
    error: Optional[str] = None
    progress: Optional[Progress] = None
    poll_url: Optional[str] = None
    already_in_progress: bool = False


class StepOut(BaseModel):
    step_type: StepType
    round_number: int
    attempt: int
    outcome: StepOutcome
    latency_ms: int
    detail: Optional[str] = None
    tokens_used: Optional[int] = None
    created_at: datetime


__all__ = [
    "SessionStatus",
    "TERMINAL_STATUSES",
    "IN_FLIGHT_STATUSES",
    "QuestionType",
    "AnswerConfidence",
    "QualityRating",
    "SectionId",
    "SECTION_ORDER",
    "SECTION_TITLES",
    "StepType",
    "StepOutcome",
    "ObjectiveScore",
    "CriticalFailure",
    "FailedGate",
    "DiagnosticInput",
    "DraftSection",
    "Draft",
    "Gap",
    "CandidateQuestion",
    "Assessment",
    "PolishEdit",
    "FinalReview",
    "Violation",
    "QualityReport",
    "EvidenceEntry",
    "InterpretationReport",
    "StartRequest",
    "AnswerIn",
    "AnswerRequest",
    "QuestionOut",
    "Progress",
    "SessionView",
    "StepOut",
]
