# FILE: maturity/interpretation/__init__.py
"""Adaptive interpretation pipeline.

Drives rounds of draft generation and critique for one diagnostic run,
asks the user a bounded number of clarifying questions, and finishes with
an evidence-grounded report plus a capacity-constrained action plan.

Usage:
    from maturity.interpretation import PipelineOrchestrator, SessionStore

    orchestrator = PipelineOrchestrator(SessionStore(db), generator, critic, config)
    view = await orchestrator.start(run_id, StartRequest(...))
"""

from .config import InterpretationConfig, load_interpretation_config
from .orchestrator import PipelineOrchestrator
from .schemas import SessionStatus, SessionView, StartRequest, AnswerRequest
from .store import SessionStore

__all__ = [
    "InterpretationConfig",
    "load_interpretation_config",
    "PipelineOrchestrator",
    "SessionStatus",
    "SessionView",
    "StartRequest",
    "AnswerRequest",
    "SessionStore",
]
