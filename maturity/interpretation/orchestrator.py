# FILE: maturity/interpretation/orchestrator.py
"""
PipelineOrchestrator - adaptive interpretation state machine.

    pending -> generating -> assessed -> awaiting_user -> generating ...
                                      -> finalizing -> complete
                                                    -> generating (polish rewrite, once)
    any non-terminal -> failed

Driven synchronously by stateless request handlers (start / answer /
status). Each step reads the persisted session, acts, and writes it back
before the next step, so a request can die anywhere and the next one picks
up from the database. The only pause point is awaiting_user.

Collaborator calls are bounded by a timeout and retried once with the same
inputs; after that the session fails with a readable cause. Malformed
critic output never fails a session (see validation.py).
"""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from maturity.actions.capacity import capacity_guidance
from maturity.actions.planner import ActionCapacityPlanner
from maturity.actions.schemas import CandidateAction, PlanningContext
from maturity.interpretation.budget import QuestionBudgetAllocator, question_signature
from maturity.interpretation.collaborators import (
    CollaboratorReply,
    DraftCritic,
    DraftGenerator,
    GenerationContext,
    PriorAnswer,
)
from maturity.interpretation.config import InterpretationConfig
from maturity.interpretation.errors import (
    CallBudgetExceeded,
    CollaboratorError,
    CollaboratorTimeout,
    InvalidAnswersError,
    InvalidTransitionError,
    SessionConflictError,
    SessionNotFoundError,
    StaleSessionError,
)
from maturity.interpretation.evidence import build_allowed_evidence, build_manifest, draft_evidence
from maturity.interpretation.models import InterpretationSession
from maturity.interpretation.prioritizer import GapPrioritizer
from maturity.interpretation.schemas import (
    IN_FLIGHT_STATUSES,
    TERMINAL_STATUSES,
    AnswerRequest,
    Assessment,
    DiagnosticInput,
    Draft,
    FinalReview,
    InterpretationReport,
    Progress,
    QuestionOut,
    QualityReport,
    SessionStatus,
    SessionView,
    StartRequest,
    StepOut,
    StepOutcome,
    StepType,
)
from maturity.interpretation.store import SessionStore
from maturity.interpretation.tonality import overall_tone
from maturity.interpretation.validation import (
    assess_quality,
    validate_assessment,
    validate_draft,
    validate_final_review,
)

logger = logging.getLogger(__name__)


# =============================================================================
# TRANSITION TABLE
# =============================================================================

S = SessionStatus

TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    S.PENDING: frozenset({S.GENERATING, S.FAILED}),
    S.GENERATING: frozenset({S.ASSESSED, S.FAILED}),
    S.ASSESSED: frozenset({S.AWAITING_USER, S.FINALIZING, S.FAILED}),
    S.AWAITING_USER: frozenset({S.GENERATING, S.FAILED}),
    S.FINALIZING: frozenset({S.GENERATING, S.COMPLETE, S.FAILED}),
    S.COMPLETE: frozenset(),
    S.FAILED: frozenset(),
}

# Sessions in these states can be picked up again after a crashed request
RESUMABLE_STATUSES = IN_FLIGHT_STATUSES | {S.PENDING}

# Rough seconds per step, for progress reporting only
STEP_ESTIMATES: Dict[StepType, int] = {
    StepType.GENERATE: 25,
    StepType.ASSESS: 15,
    StepType.FINALIZE: 15,
    StepType.PLAN: 2,
}

_PROGRESS_STEPS = (StepType.GENERATE, StepType.ASSESS, StepType.FINALIZE, StepType.PLAN)

_STATUS_STEP = {
    S.PENDING: ("queued", 0),
    S.GENERATING: (StepType.GENERATE.value, 0),
    S.ASSESSED: (StepType.ASSESS.value, 1),
    S.FINALIZING: (StepType.FINALIZE.value, 2),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in TRANSITIONS[current]


class PipelineOrchestrator:
    def __init__(
        self,
        store: SessionStore,
        generator: DraftGenerator,
        critic: DraftCritic,
        config: InterpretationConfig,
        poll_url_template: str = "/interpretation/{run_id}/status",
    ):
        self.store = store
        self.generator = generator
        self.critic = critic
        self.config = config
        self.allocator = QuestionBudgetAllocator(config.limits)
        self.prioritizer = GapPrioritizer()
        self.planner = ActionCapacityPlanner(config.capacity)
        self.poll_url_template = poll_url_template

    # =========================================================================
    # CALLER-FACING OPERATIONS
    # =========================================================================

    async def start(self, run_id: str, request: StartRequest) -> SessionView:
        """Start (or return) the pipeline for a run. Idempotent per run_id."""
        existing = self.store.get_by_run_id(run_id)
        if existing is not None:
            status = SessionStatus(existing.status)
            if request.restart and status == S.COMPLETE:
                logger.info(f"[orchestrator] Restarting run {run_id}: deleting complete session {existing.id}")
                self.store.delete(existing)
            elif self._is_abandoned(existing):
                logger.warning(
                    f"[orchestrator] Resuming abandoned session for run {run_id} (status={status.value})"
                )
                self.store.touch(existing)
                self._save(existing)
                await self._drive(existing)
                return self._view(existing)
            else:
                if request.restart:
                    logger.info(f"[orchestrator] Restart ignored for run {run_id}: session is {status.value}")
                return self._view(existing, already_in_progress=status not in TERMINAL_STATUSES)

        session, created = self.store.get_or_create(
            run_id,
            diagnostic_input=request.diagnostic_input.model_dump(mode="json"),
            candidate_actions=[c.model_dump(mode="json") for c in request.candidate_actions],
            planning_context=request.planning_context.model_dump(mode="json"),
        )
        if not created:
            return self._view(session, already_in_progress=SessionStatus(session.status) not in TERMINAL_STATUSES)

        await self._drive(session)
        return self._view(session)

    def status(self, run_id: str) -> SessionView:
        return self._view(self._require(run_id))

    def steps(self, run_id: str) -> List[StepOut]:
        session = self._require(run_id)
        return [
            StepOut(
                step_type=StepType(s.step_type),
                round_number=s.round_number,
                attempt=s.attempt,
                outcome=StepOutcome(s.outcome),
                latency_ms=s.latency_ms,
                detail=s.detail,
                tokens_used=s.tokens_used,
                created_at=s.created_at,
            )
            for s in session.steps
        ]

    async def answer(self, run_id: str, request: AnswerRequest) -> SessionView:
        """Record answers for every outstanding question, then resume."""
        session = self._require(run_id)
        status = SessionStatus(session.status)
        if status != S.AWAITING_USER:
            raise SessionConflictError(
                f"session for run {run_id} is {status.value}, not awaiting answers",
                snapshot=self._view(session),
            )
        if request.expected_round is not None and request.expected_round != session.current_round:
            raise SessionConflictError(
                f"stale round: caller expected {request.expected_round}, session is on {session.current_round}",
                snapshot=self._view(session),
            )

        outstanding = {q.question_id for q in self.store.outstanding_questions(session)}
        submitted = [a.question_id for a in request.answers]
        problems = []
        dupes = sorted({qid for qid in submitted if submitted.count(qid) > 1})
        if dupes:
            problems.append(f"duplicate answers for {', '.join(dupes)}")
        unknown = sorted(set(submitted) - outstanding)
        if unknown:
            problems.append(f"not outstanding this round: {', '.join(unknown)}")
        missing = sorted(outstanding - set(submitted))
        if missing:
            problems.append(f"missing answers for {', '.join(missing)}")
        if problems:
            raise InvalidAnswersError("; ".join(problems))

        self.store.append_answers(session, request.answers, self.config.timing)
        self._transition(session, S.GENERATING)
        self._save(session)
        logger.info(f"[orchestrator] Run {run_id}: {len(submitted)} answer(s) recorded for round {session.current_round}")

        await self._drive(session)
        return self._view(session)

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    async def _drive(self, session: InterpretationSession) -> None:
        """Advance until the session pauses for the user or terminates."""
        diagnostic = DiagnosticInput.model_validate(session.diagnostic_input)
        try:
            while True:
                status = SessionStatus(session.status)
                if status in TERMINAL_STATUSES or status == S.AWAITING_USER:
                    return
                if status == S.PENDING:
                    self._transition(session, S.GENERATING)
                elif status == S.GENERATING:
                    await self._generate(session, diagnostic)
                elif status == S.ASSESSED:
                    await self._assess(session, diagnostic)
                elif status == S.FINALIZING:
                    await self._finalize(session, diagnostic)
                self._save(session)
        except CollaboratorError as exc:
            self._fail(session, str(exc))

    async def _generate(self, session: InterpretationSession, diagnostic: DiagnosticInput) -> None:
        pairs = self.store.answered_pairs(session)
        prior = [
            PriorAnswer(
                question_id=q.question_id,
                question=q.text,
                question_type=q.question_type,
                answer=a.answer,
                confidence=a.confidence,
            )
            for q, a in pairs
        ]
        allowed = self._allowed_evidence(session, diagnostic)
        context = GenerationContext(
            allowed_evidence=sorted(allowed),
            rewrite_instructions=list(session.rewrite_instructions or []),
        )
        draft: Draft = await self._call(
            session, StepType.GENERATE, validate_draft,
            self.generator.generate, diagnostic, prior, context,
        )
        session.draft = draft.model_dump(mode="json")
        self._transition(session, S.ASSESSED)

    async def _assess(self, session: InterpretationSession, diagnostic: DiagnosticInput) -> None:
        draft = Draft.model_validate(session.draft)

        if session.polish_loopback_used:
            # Rewrite after a failed final gate goes straight back to finalizing
            logger.info(f"[orchestrator] Run {session.run_id}: polish rewrite done, skipping clarification")
            self._transition(session, S.FINALIZING)
            return

        assessment: Assessment = await self._call(
            session, StepType.ASSESS, validate_assessment,
            self.critic.assess, draft, diagnostic,
        )
        session.rewrite_instructions = list(assessment.rewrite_instructions)

        ranked = self.prioritizer.rank(assessment.gaps, draft_evidence(draft))
        ordered = self.prioritizer.order_questions(assessment.generated_questions, ranked)
        allocation = self.allocator.allocate(
            ordered,
            total_questions_asked=session.total_questions_asked,
            current_round=session.current_round,
            asked_signatures=[question_signature(q.text) for q in session.questions],
        )
        logger.info(
            f"[orchestrator] Run {session.run_id}: quality={assessment.overall_quality.value} "
            f"gaps={len(assessment.gaps)} allocation={allocation.to_dict()}"
        )

        if not allocation.should_ask:
            self._transition(session, S.FINALIZING)
            return

        session.current_round += 1
        self.store.add_questions(session, session.current_round, allocation.kept)
        session.total_questions_asked += len(allocation.kept)
        self._transition(session, S.AWAITING_USER)

    async def _finalize(self, session: InterpretationSession, diagnostic: DiagnosticInput) -> None:
        draft = Draft.model_validate(session.draft)
        review: FinalReview = await self._call(
            session, StepType.FINALIZE, validate_final_review,
            self.critic.finalize, draft,
        )
        allowed = self._allowed_evidence(session, diagnostic)
        quality = assess_quality(draft, allowed, review.forbidden_matches)
        hard = quality.hard_violations

        if hard and not session.polish_loopback_used:
            logger.warning(
                f"[orchestrator] Run {session.run_id}: {len(hard)} hard violation(s) at final gate, rewriting once"
            )
            session.polish_loopback_used = True
            session.rewrite_instructions = [
                f"Fix before release ({v.section_id or 'draft'}): {v.code} - {v.detail}" for v in hard
            ] + [e.instruction for e in review.edits]
            self._transition(session, S.GENERATING)
            return

        if hard:
            logger.warning(
                f"[orchestrator] Run {session.run_id}: force-accepting draft with {len(hard)} hard violation(s)"
            )
        elif not review.ready:
            logger.info(f"[orchestrator] Run {session.run_id}: critic not ready but no hard violations, accepting")

        self._complete(session, diagnostic, draft, quality, review, compromised=bool(hard))

    def _complete(
        self,
        session: InterpretationSession,
        diagnostic: DiagnosticInput,
        draft: Draft,
        quality: QualityReport,
        review: FinalReview,
        compromised: bool,
    ) -> None:
        started = time.monotonic()
        candidates = [CandidateAction.model_validate(c) for c in session.candidate_actions or []]
        context = PlanningContext.model_validate(session.planning_context or {})
        plan = self.planner.plan(candidates, context)
        self.store.log_step(
            session, StepType.PLAN, StepOutcome.OK,
            latency_ms=int((time.monotonic() - started) * 1000),
            detail=f"{plan.summary.total_actions} actions, {plan.summary.omitted} omitted",
        )

        report = InterpretationReport(
            sections=draft.sections,
            evidence_manifest=build_manifest(draft, self._allowed_evidence(session, diagnostic)),
            quality=quality,
            quality_compromised=compromised,
            overall_tone=overall_tone(diagnostic.objectives).value,
            polish_edits=review.edits,
            rounds_used=session.current_round,
            questions_answered=len(session.answers),
            action_plan=plan,
            capacity_guidance=capacity_guidance(plan.capacity),
            generated_at=datetime.utcnow(),
        )
        session.report = report.model_dump(mode="json")
        session.completed_at = datetime.utcnow()
        self._transition(session, S.COMPLETE)

    def _fail(self, session: InterpretationSession, cause: str) -> None:
        logger.error(f"[orchestrator] Run {session.run_id} failed: {cause}")
        self._transition(session, S.FAILED)
        session.error = cause
        self._save(session)

    def _transition(self, session: InterpretationSession, target: SessionStatus) -> None:
        current = SessionStatus(session.status)
        if not can_transition(current, target):
            raise InvalidTransitionError(f"illegal transition {current.value} -> {target.value}")
        logger.info(
            f"[orchestrator] Run {session.run_id}: {current.value} -> {target.value} (round {session.current_round})"
        )
        session.status = target.value

    # =========================================================================
    # COLLABORATOR CALLS
    # =========================================================================

    async def _call(
        self,
        session: InterpretationSession,
        step_type: StepType,
        parse: Callable[[Any], Any],
        fn: Callable[..., Any],
        *args: Any,
    ) -> Any:
        """Call a collaborator with timeout + retry, validating the reply.

        A parse failure (MalformedResponseError) counts as a failed attempt.
        """
        policy = self.config.collaborators
        limit = self.config.limits.max_ai_calls_per_session
        last_error: Optional[CollaboratorError] = None

        for attempt in range(1, policy.attempts + 1):
            if session.ai_calls_used >= limit:
                raise CallBudgetExceeded(
                    f"{step_type.value} not attempted: session used all {limit} collaborator calls"
                    + (f" (last error: {last_error})" if last_error else "")
                )
            session.ai_calls_used += 1
            started = time.monotonic()
            tokens = None
            try:
                reply = await asyncio.wait_for(fn(*args), timeout=policy.timeout_seconds)
                payload = reply
                if isinstance(reply, CollaboratorReply):
                    payload, tokens = reply.payload, reply.tokens_used
                result = parse(payload)
            except asyncio.TimeoutError:
                last_error = CollaboratorTimeout(f"{step_type.value} timed out after {policy.timeout_seconds:g}s")
                outcome = StepOutcome.TIMEOUT
            except CollaboratorError as exc:
                last_error = exc
                outcome = StepOutcome.ERROR
            except Exception as exc:
                last_error = CollaboratorError(f"{step_type.value} raised {type(exc).__name__}: {exc}")
                outcome = StepOutcome.ERROR
            else:
                origin = getattr(result, "origin", "parsed")
                self.store.log_step(
                    session, step_type,
                    StepOutcome.FALLBACK if origin == "fallback" else StepOutcome.OK,
                    attempt=attempt,
                    latency_ms=int((time.monotonic() - started) * 1000),
                    detail="; ".join(getattr(result, "defects", []) or []) or None,
                    tokens_used=tokens,
                )
                return result

            self.store.log_step(
                session, step_type, outcome,
                attempt=attempt,
                latency_ms=int((time.monotonic() - started) * 1000),
                detail=str(last_error),
            )
            logger.warning(
                f"[orchestrator] Run {session.run_id}: {step_type.value} attempt {attempt}/{policy.attempts} "
                f"failed: {last_error}"
            )

        raise CollaboratorError(f"{step_type.value} failed after {policy.attempts} attempt(s): {last_error}")

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _require(self, run_id: str) -> InterpretationSession:
        session = self.store.get_by_run_id(run_id)
        if session is None:
            raise SessionNotFoundError(f"no interpretation session for run {run_id}")
        return session

    def _save(self, session: InterpretationSession) -> None:
        run_id = session.run_id
        try:
            self.store.save(session)
        except StaleSessionError as exc:
            current = self.store.get_by_run_id(run_id)
            raise StaleSessionError(str(exc), snapshot=self._view(current) if current else None) from exc

    def _is_abandoned(self, session: InterpretationSession) -> bool:
        if SessionStatus(session.status) not in RESUMABLE_STATUSES:
            return False
        cutoff = datetime.utcnow() - timedelta(seconds=self.config.stale_after_seconds)
        return session.updated_at is not None and session.updated_at < cutoff

    def _allowed_evidence(self, session: InterpretationSession, diagnostic: DiagnosticInput) -> set[str]:
        answered = [a.question_id for a in session.answers]
        return build_allowed_evidence(diagnostic, answered)

    def _progress(self, session: InterpretationSession) -> Optional[Progress]:
        step = _STATUS_STEP.get(SessionStatus(session.status))
        if step is None:
            return None
        name, done = step
        remaining = sum(STEP_ESTIMATES[s] for s in _PROGRESS_STEPS[done:])
        return Progress(
            step=name,
            steps_completed=done,
            steps_total=len(_PROGRESS_STEPS),
            estimated_seconds_remaining=remaining,
        )

    def _view(self, session: InterpretationSession, already_in_progress: bool = False) -> SessionView:
        status = SessionStatus(session.status)
        view = SessionView(
            session_id=session.id,
            run_id=session.run_id,
            status=status,
            current_round=session.current_round,
            total_questions_asked=session.total_questions_asked,
            already_in_progress=already_in_progress,
        )
        if status == S.AWAITING_USER:
            view.questions = [
                QuestionOut(
                    question_id=q.question_id,
                    gap_id=q.gap_id,
                    round_number=q.round_number,
                    type=q.question_type,
                    text=q.text,
                    options=list(q.options or []),
                    rationale=q.rationale or "",
                )
                for q in self.store.questions_for_round(session, session.current_round)
            ]
            view.poll_url = self.poll_url_template.format(run_id=session.run_id)
        elif status == S.COMPLETE:
            view.report = InterpretationReport.model_validate(session.report)
        elif status == S.FAILED:
            view.error = session.error
        else:
            view.progress = self._progress(session)
            view.poll_url = self.poll_url_template.format(run_id=session.run_id)
        return view


__all__ = [
    "TRANSITIONS",
    "STEP_ESTIMATES",
    "can_transition",
    "PipelineOrchestrator",
]
