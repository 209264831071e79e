# FILE: maturity/interpretation/models.py
"""
Interpretation pipeline - Database Models

One InterpretationSession per run_id. The unique constraint on run_id is
the mutual-exclusion primitive: two requests cannot both create a live
pipeline for the same run. The version column gives optimistic
concurrency on every later write.

Questions, answers and step logs hang off the session and are removed
with it on restart.
"""
from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from maturity.db import Base


class InterpretationSession(Base):
    """
    Aggregate for one adaptive interpretation run.

    Mutated only by the orchestrator. `report` is set only when complete,
    `error` only when failed.
    """
    __tablename__ = "interpretation_sessions"

    id = Column(String(36), primary_key=True)  # UUID
    run_id = Column(String(64), nullable=False, unique=True, index=True)

    status = Column(String(20), default="pending", nullable=False, index=True)
    current_round = Column(Integer, default=0, nullable=False)
    total_questions_asked = Column(Integer, default=0, nullable=False)
    ai_calls_used = Column(Integer, default=0, nullable=False)

    # Immutable inputs captured at start
    diagnostic_input = Column(JSON, nullable=False)
    candidate_actions = Column(JSON, nullable=False, default=list)
    planning_context = Column(JSON, nullable=False, default=dict)

    # Working state carried across user round-trips
    draft = Column(JSON, nullable=True)
    rewrite_instructions = Column(JSON, nullable=False, default=list)
    polish_loopback_used = Column(Boolean, default=False, nullable=False)

    report = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    questions = relationship(
        "InterpretationQuestion",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="InterpretationQuestion.id",
    )
    answers = relationship(
        "InterpretationAnswer",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="InterpretationAnswer.id",
    )
    steps = relationship(
        "InterpretationStep",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="InterpretationStep.id",
    )

    __mapper_args__ = {"version_id_col": version}


class InterpretationQuestion(Base):
    """A clarifying question shown to the user. Immutable once asked."""
    __tablename__ = "interpretation_questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(36), ForeignKey("interpretation_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_id = Column(String(64), nullable=False)  # clarifier_round{r}_q{n}
    round_number = Column(Integer, nullable=False)
    gap_id = Column(String(128), nullable=True)
    question_type = Column(String(20), nullable=False)
    text = Column(Text, nullable=False)
    options = Column(JSON, nullable=False, default=list)
    rationale = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    session = relationship("InterpretationSession", back_populates="questions")

    __table_args__ = (
        UniqueConstraint("session_id", "question_id", name="uq_interp_question_session_qid"),
        Index("ix_interp_question_session_round", "session_id", "round_number"),
    )


class InterpretationAnswer(Base):
    """Append-only user answer."""
    __tablename__ = "interpretation_answers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(36), ForeignKey("interpretation_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_id = Column(String(64), nullable=False)
    answer = Column(JSON, nullable=False)  # str or bool
    confidence = Column(String(10), default="normal", nullable=False)
    time_to_answer_ms = Column(Integer, nullable=True)
    answered_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    session = relationship("InterpretationSession", back_populates="answers")

    __table_args__ = (
        UniqueConstraint("session_id", "question_id", name="uq_interp_answer_session_qid"),
    )


class InterpretationStep(Base):
    """One collaborator call attempt, for debugging slow or failing runs."""
    __tablename__ = "interpretation_steps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(36), ForeignKey("interpretation_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step_type = Column(String(20), nullable=False)
    round_number = Column(Integer, nullable=False, default=0)
    attempt = Column(Integer, nullable=False, default=1)
    outcome = Column(String(20), nullable=False)
    latency_ms = Column(Integer, nullable=False, default=0)
    detail = Column(Text, nullable=True)
    tokens_used = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    session = relationship("InterpretationSession", back_populates="steps")


__all__ = [
    "InterpretationSession",
    "InterpretationQuestion",
    "InterpretationAnswer",
    "InterpretationStep",
]
