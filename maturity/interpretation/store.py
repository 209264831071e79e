# FILE: maturity/interpretation/store.py
"""
SessionStore - persistence for interpretation sessions.

Thin layer over a SQLAlchemy Session. All writes go through save(), which
commits and turns a lost optimistic-concurrency race into
StaleSessionError. Session creation relies on the unique run_id: when two
requests race, the loser's insert fails and it reads the winner's row.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from maturity.interpretation.config import AnswerTimingThresholds
from maturity.interpretation.errors import StaleSessionError
from maturity.interpretation.evidence import clarifier_evidence_id
from maturity.interpretation.models import (
    InterpretationAnswer,
    InterpretationQuestion,
    InterpretationSession,
    InterpretationStep,
)
from maturity.interpretation.schemas import (
    AnswerConfidence,
    AnswerIn,
    CandidateQuestion,
    QuestionType,
    SessionStatus,
    StepOutcome,
    StepType,
)

logger = logging.getLogger(__name__)


def classify_answer_confidence(
    question_type: str,
    option_count: int,
    time_to_answer_ms: Optional[int],
    thresholds: AnswerTimingThresholds,
) -> AnswerConfidence:
    """Answers given faster than a person could read the question are low-confidence."""
    if time_to_answer_ms is None:
        return AnswerConfidence.NORMAL
    if question_type == QuestionType.FREE_TEXT.value:
        threshold = thresholds.free_text_ms
    elif question_type == QuestionType.MCQ.value and option_count > 3:
        threshold = thresholds.long_mcq_ms
    else:
        threshold = thresholds.default_ms
    return AnswerConfidence.LOW if time_to_answer_ms < threshold else AnswerConfidence.NORMAL


class SessionStore:
    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # SESSIONS
    # =========================================================================

    def get_by_run_id(self, run_id: str) -> Optional[InterpretationSession]:
        return (
            self.db.query(InterpretationSession)
            .filter(InterpretationSession.run_id == run_id)
            .first()
        )

    def get_or_create(
        self,
        run_id: str,
        diagnostic_input: dict,
        candidate_actions: list,
        planning_context: dict,
    ) -> Tuple[InterpretationSession, bool]:
        """Return (session, created). Never creates a second row for a run_id."""
        existing = self.get_by_run_id(run_id)
        if existing:
            return existing, False

        try:
            session = InterpretationSession(
                id=str(uuid.uuid4()),
                run_id=run_id,
                status=SessionStatus.PENDING.value,
                diagnostic_input=diagnostic_input,
                candidate_actions=candidate_actions,
                planning_context=planning_context,
                rewrite_instructions=[],
            )
            self.db.add(session)
            self.db.commit()
            logger.info(f"[store] Created interpretation session {session.id} for run {run_id}")
            return session, True
        except IntegrityError:
            self.db.rollback()
            logger.debug(f"[store] Session for run {run_id} created by concurrent request, fetching")
            session = self.get_by_run_id(run_id)
            if session:
                return session, False
            raise RuntimeError(f"Failed to get or create interpretation session for run {run_id}")

    def save(self, session: InterpretationSession) -> InterpretationSession:
        # The instance is unreadable between a failed flush and rollback()
        with self.db.no_autoflush:
            run_id = session.run_id
        try:
            self.db.commit()
        except (StaleDataError, IntegrityError) as exc:
            # Duplicate answer/question rows mean another request won the same round
            self.db.rollback()
            logger.warning(f"[store] Lost update on run {run_id}: {exc}")
            raise StaleSessionError(f"session for run {run_id} was modified concurrently") from exc
        return session

    def delete(self, session: InterpretationSession) -> None:
        """Remove a session with its questions, answers and steps."""
        run_id = session.run_id
        try:
            self.db.delete(session)
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            raise StaleSessionError(f"session for run {run_id} was modified concurrently") from exc
        logger.info(f"[store] Deleted interpretation session for run {run_id}")

    def touch(self, session: InterpretationSession) -> None:
        session.updated_at = datetime.utcnow()

    # =========================================================================
    # QUESTIONS / ANSWERS
    # =========================================================================

    def add_questions(
        self,
        session: InterpretationSession,
        round_number: int,
        questions: List[CandidateQuestion],
    ) -> List[InterpretationQuestion]:
        """Stage a round's questions. Committed by the next save()."""
        rows = []
        for n, q in enumerate(questions, start=1):
            row = InterpretationQuestion(
                question_id=clarifier_evidence_id(round_number, n),
                round_number=round_number,
                gap_id=q.gap_id,
                question_type=q.type.value,
                text=q.text,
                options=list(q.options),
                rationale=q.rationale or None,
            )
            session.questions.append(row)
            rows.append(row)
        return rows

    def questions_for_round(self, session: InterpretationSession, round_number: int) -> List[InterpretationQuestion]:
        return [q for q in session.questions if q.round_number == round_number]

    def outstanding_questions(self, session: InterpretationSession) -> List[InterpretationQuestion]:
        answered = {a.question_id for a in session.answers}
        return [
            q for q in self.questions_for_round(session, session.current_round)
            if q.question_id not in answered
        ]

    def append_answers(
        self,
        session: InterpretationSession,
        answers: List[AnswerIn],
        thresholds: AnswerTimingThresholds,
    ) -> List[InterpretationAnswer]:
        """Stage answers for known questions. Committed by the next save()."""
        by_id = {q.question_id: q for q in session.questions}
        rows = []
        for a in answers:
            question = by_id[a.question_id]
            confidence = classify_answer_confidence(
                question.question_type,
                len([o for o in question.options or [] if o != "Other"]),
                a.time_to_answer_ms,
                thresholds,
            )
            row = InterpretationAnswer(
                question_id=a.question_id,
                answer=a.answer,
                confidence=confidence.value,
                time_to_answer_ms=a.time_to_answer_ms,
            )
            session.answers.append(row)
            rows.append(row)
        low = sum(1 for r in rows if r.confidence == AnswerConfidence.LOW.value)
        if low:
            logger.info(f"[store] {low} low-confidence answer(s) on run {session.run_id}")
        return rows

    def answered_pairs(self, session: InterpretationSession) -> List[Tuple[InterpretationQuestion, InterpretationAnswer]]:
        by_id = {q.question_id: q for q in session.questions}
        return [(by_id[a.question_id], a) for a in session.answers if a.question_id in by_id]

    # =========================================================================
    # STEP LOG
    # =========================================================================

    def log_step(
        self,
        session: InterpretationSession,
        step_type: StepType,
        outcome: StepOutcome,
        attempt: int = 1,
        latency_ms: int = 0,
        detail: Optional[str] = None,
        tokens_used: Optional[int] = None,
    ) -> InterpretationStep:
        step = InterpretationStep(
            step_type=step_type.value,
            round_number=session.current_round,
            attempt=attempt,
            outcome=outcome.value,
            latency_ms=latency_ms,
            detail=(detail or None) and detail[:2000],
            tokens_used=tokens_used,
        )
        session.steps.append(step)
        return step


__all__ = ["SessionStore", "classify_answer_confidence"]
