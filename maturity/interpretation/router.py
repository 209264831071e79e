# FILE: maturity/interpretation/router.py
"""
Interpretation Router - HTTP API Endpoints

- POST /interpretation/{run_id}/start   - start (or return) the pipeline for a run
- GET  /interpretation/{run_id}/status  - poll: progress, questions or report
- POST /interpretation/{run_id}/answers - answer the current round, resume
- GET  /interpretation/{run_id}/steps   - collaborator call log for a run

The orchestrator is built per request from app.state (config and
collaborators are created once at startup in main.py).
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from maturity.db import get_db
from maturity.interpretation.errors import (
    InvalidAnswersError,
    SessionConflictError,
    SessionNotFoundError,
)
from maturity.interpretation.orchestrator import PipelineOrchestrator
from maturity.interpretation.schemas import AnswerRequest, SessionView, StartRequest, StepOut
from maturity.interpretation.store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter()


def get_orchestrator(request: Request, db: Session = Depends(get_db)) -> PipelineOrchestrator:
    state = request.app.state
    return PipelineOrchestrator(
        store=SessionStore(db),
        generator=state.draft_generator,
        critic=state.draft_critic,
        config=state.interpretation_config,
    )


def _conflict(exc: SessionConflictError) -> HTTPException:
    detail = {"message": str(exc)}
    if exc.snapshot is not None:
        detail["session"] = exc.snapshot.model_dump(mode="json")
    return HTTPException(status_code=409, detail=detail)


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/{run_id}/start", response_model=SessionView)
async def start_interpretation(
    run_id: str,
    body: StartRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        logger.info(f"[interpretation] Start requested for run {run_id} (restart={body.restart})")
        return await orchestrator.start(run_id, body)
    except SessionConflictError as e:
        raise _conflict(e)
    except Exception as e:
        logger.exception(f"[interpretation] Error starting run {run_id}")
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")


@router.get("/{run_id}/status", response_model=SessionView)
def get_interpretation_status(
    run_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.status(run_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{run_id}/answers", response_model=SessionView)
async def submit_answers(
    run_id: str,
    body: AnswerRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.answer(run_id, body)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidAnswersError as e:
        logger.info(f"[interpretation] Rejected answers for run {run_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except SessionConflictError as e:
        raise _conflict(e)
    except Exception as e:
        logger.exception(f"[interpretation] Error submitting answers for run {run_id}")
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")


@router.get("/{run_id}/steps", response_model=List[StepOut])
def list_interpretation_steps(
    run_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.steps(run_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
