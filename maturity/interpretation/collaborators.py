# FILE: maturity/interpretation/collaborators.py
"""
DraftGenerator / DraftCritic

The orchestrator only depends on the two protocols below. Their return
values are deliberately loose (dict, JSON text, or a CollaboratorReply
wrapping either): validation.py turns them into typed objects.

LlmDraftGenerator and LlmDraftCritic are the production implementations,
prompting through the provider registry.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Sequence

from maturity.interpretation.config import ModelSelection
from maturity.interpretation.errors import CollaboratorError
from maturity.interpretation.prompts import (
    CRITIC_ASSESS_SYSTEM_PROMPT,
    CRITIC_FINAL_SYSTEM_PROMPT,
    GENERATOR_SYSTEM_PROMPT,
    build_assess_message,
    build_final_message,
    build_generator_message,
)
from maturity.interpretation.schemas import DiagnosticInput, Draft
from maturity.providers.registry import LlmCallResult, ProviderRegistry

logger = logging.getLogger(__name__)


@dataclass
class PriorAnswer:
    """An answered clarifying question, as the generator sees it."""
    question_id: str
    question: str
    question_type: str
    answer: Any
    confidence: str = "normal"

    def to_dict(self) -> dict:
        return {
            "question_id": self.question_id,
            "question": self.question,
            "type": self.question_type,
            "answer": self.answer,
            "confidence": self.confidence,
        }


@dataclass
class CollaboratorReply:
    payload: Any
    tokens_used: Optional[int] = None


@dataclass
class GenerationContext:
    """Extras beyond diagnostic input + answers that shape a draft."""
    allowed_evidence: List[str] = field(default_factory=list)
    rewrite_instructions: List[str] = field(default_factory=list)


class DraftGenerator(Protocol):
    async def generate(
        self,
        diagnostic_input: DiagnosticInput,
        prior_answers: Sequence[PriorAnswer],
        context: Optional[GenerationContext] = None,
    ) -> Any:
        ...


class DraftCritic(Protocol):
    async def assess(self, draft: Draft, diagnostic_input: DiagnosticInput) -> Any:
        ...

    async def finalize(self, draft: Draft) -> Any:
        ...


# =============================================================================
# LLM-BACKED IMPLEMENTATIONS
# =============================================================================

def _reply_or_raise(result: LlmCallResult, role: str) -> CollaboratorReply:
    if not result.is_success():
        raise CollaboratorError(
            f"{role} call to {result.provider_id}/{result.model_id} failed: "
            f"{result.status.value} {result.error_message or ''}".strip()
        )
    return CollaboratorReply(payload=result.content, tokens_used=result.usage.total_tokens or None)


class LlmDraftGenerator:
    def __init__(self, registry: ProviderRegistry, models: ModelSelection, timeout_seconds: float):
        self.registry = registry
        self.models = models
        self.timeout_seconds = timeout_seconds

    async def generate(
        self,
        diagnostic_input: DiagnosticInput,
        prior_answers: Sequence[PriorAnswer],
        context: Optional[GenerationContext] = None,
    ) -> CollaboratorReply:
        context = context or GenerationContext()
        message = build_generator_message(
            diagnostic_input,
            [a.to_dict() for a in prior_answers],
            context.allowed_evidence,
            context.rewrite_instructions,
        )
        provider_id, model_id = self.models.generator_route
        result = await self.registry.llm_call(
            provider_id=provider_id,
            model_id=model_id,
            messages=[{"role": "user", "content": message}],
            system_prompt=GENERATOR_SYSTEM_PROMPT,
            temperature=0.3,
            max_tokens=self.models.max_tokens,
            timeout_seconds=self.timeout_seconds,
        )
        return _reply_or_raise(result, "generator")


class LlmDraftCritic:
    def __init__(self, registry: ProviderRegistry, models: ModelSelection, timeout_seconds: float):
        self.registry = registry
        self.models = models
        self.timeout_seconds = timeout_seconds

    async def _call(self, system_prompt: str, message: str, role: str) -> CollaboratorReply:
        provider_id, model_id = self.models.critic_route
        result = await self.registry.llm_call(
            provider_id=provider_id,
            model_id=model_id,
            messages=[{"role": "user", "content": message}],
            system_prompt=system_prompt,
            temperature=0.0,
            max_tokens=self.models.max_tokens,
            timeout_seconds=self.timeout_seconds,
        )
        return _reply_or_raise(result, role)

    async def assess(self, draft: Draft, diagnostic_input: DiagnosticInput) -> CollaboratorReply:
        return await self._call(CRITIC_ASSESS_SYSTEM_PROMPT, build_assess_message(draft, diagnostic_input), "critic")

    async def finalize(self, draft: Draft) -> CollaboratorReply:
        return await self._call(CRITIC_FINAL_SYSTEM_PROMPT, build_final_message(draft), "critic-final")


__all__ = [
    "PriorAnswer",
    "CollaboratorReply",
    "GenerationContext",
    "DraftGenerator",
    "DraftCritic",
    "LlmDraftGenerator",
    "LlmDraftCritic",
]
