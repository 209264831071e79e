# FILE: tests/test_collaborators.py
"""
Tests for the LLM-backed generator and critic.
"""

import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest
from unittest.mock import AsyncMock, Mock, patch

from maturity.interpretation.collaborators import (
    CollaboratorReply,
    GenerationContext,
    LlmDraftCritic,
    LlmDraftGenerator,
    PriorAnswer,
)
from maturity.interpretation.config import ModelSelection, load_interpretation_config
from maturity.interpretation.errors import CollaboratorError
from maturity.interpretation.prompts import build_generator_message
from maturity.interpretation.schemas import DiagnosticInput
from maturity.interpretation.validation import validate_draft
from maturity.providers.registry import LlmCallResult, LlmCallStatus, LlmUsage, ProviderRegistry

from conftest import make_diagnostic_input, make_draft_payload

MODELS = ModelSelection(
    generator_provider="openai",
    generator_model="gen-model",
    critic_provider="openai",
    critic_model="critic-model",
)


def _registry(result):
    registry = Mock()
    registry.llm_call = AsyncMock(return_value=result)
    return registry


def _ok(content='{"sections": []}', tokens=42):
    return LlmCallResult(
        status=LlmCallStatus.SUCCESS,
        provider_id="openai",
        model_id="gen-model",
        content=content,
        usage=LlmUsage(total_tokens=tokens),
    )


@pytest.fixture
def diagnostic():
    return DiagnosticInput.model_validate(make_diagnostic_input())


class TestGenerator:
    """Test LlmDraftGenerator."""

    @pytest.mark.asyncio
    async def test_prompt_carries_answers_evidence_and_rewrites(self, diagnostic):
        """Test answers, allowed evidence, rewrite instructions and tone reach the prompt."""
        registry = _registry(_ok())
        generator = LlmDraftGenerator(registry, MODELS, timeout_seconds=30)
        prior = [PriorAnswer("clarifier_round1_q1", "Is the forecast reviewed?", "yes_no", True, "low")]
        context = GenerationContext(allowed_evidence=["obj_forecasting"], rewrite_instructions=["Cite the gate."])

        reply = await generator.generate(diagnostic, prior, context)

        assert isinstance(reply, CollaboratorReply)
        assert reply.tokens_used == 42
        kwargs = registry.llm_call.call_args.kwargs
        assert kwargs["provider_id"] == "openai"
        assert kwargs["model_id"] == "gen-model"
        assert kwargs["timeout_seconds"] == 30
        message = kwargs["messages"][0]["content"]
        assert "clarifier_round1_q1" in message
        assert '"confidence": "low"' in message
        assert "obj_forecasting" in message
        assert "- Cite the gate." in message
        assert "Overall tone: urgent" in message

    @pytest.mark.asyncio
    async def test_failed_call_raises(self, diagnostic):
        """Test a non-success registry result becomes a CollaboratorError."""
        failed = LlmCallResult(
            status=LlmCallStatus.PROVIDER_UNAVAILABLE, provider_id="openai", model_id="gen-model",
            error_message="no key",
        )
        generator = LlmDraftGenerator(_registry(failed), MODELS, timeout_seconds=30)
        with pytest.raises(CollaboratorError, match="provider_unavailable"):
            await generator.generate(diagnostic, [])


class TestCritic:
    """Test LlmDraftCritic."""

    @pytest.mark.asyncio
    async def test_assess_and_finalize_use_critic_model(self, diagnostic):
        """Test both critic steps use the critic model with distinct system prompts."""
        registry = _registry(_ok('{"ready": true}', tokens=0))
        critic = LlmDraftCritic(registry, MODELS, timeout_seconds=10)
        draft = validate_draft(make_draft_payload())

        assessed = await critic.assess(draft, diagnostic)
        final = await critic.finalize(draft)

        assert assessed.payload == '{"ready": true}'
        assert final.tokens_used is None
        calls = registry.llm_call.call_args_list
        assert [c.kwargs["model_id"] for c in calls] == ["critic-model", "critic-model"]
        assert calls[0].kwargs["system_prompt"] != calls[1].kwargs["system_prompt"]
        assert calls[0].kwargs["temperature"] == 0.0


class TestDefaultRouting:
    """Test the default config against a real registry with both keys set."""

    @pytest.mark.asyncio
    async def test_each_role_reaches_its_vendor(self, diagnostic):
        """Test gpt-4.1 goes to OpenAI and claude-sonnet-4-5 goes to Anthropic."""
        models = load_interpretation_config({}).models
        registry = ProviderRegistry(env={"OPENAI_API_KEY": "sk-test", "ANTHROPIC_API_KEY": "sk-ant-test"})
        routed = []

        def _recorder(provider_id):
            async def _call(model_id, *args, **kwargs):
                routed.append((provider_id, model_id))
                return LlmCallResult(status=LlmCallStatus.SUCCESS, provider_id=provider_id, model_id=model_id)
            return _call

        with patch.object(registry, "_call_openai", side_effect=_recorder("openai")), \
                patch.object(registry, "_call_anthropic", side_effect=_recorder("anthropic")):
            await LlmDraftGenerator(registry, models, timeout_seconds=5).generate(diagnostic, [])
            await LlmDraftCritic(registry, models, timeout_seconds=5).assess(
                validate_draft(make_draft_payload()), diagnostic
            )

        assert routed == [("openai", "gpt-4.1"), ("anthropic", "claude-sonnet-4-5")]

    @pytest.mark.asyncio
    async def test_missing_vendor_key_is_not_rerouted(self, diagnostic):
        """Test the critic fails cleanly instead of sending a Claude model to OpenAI."""
        models = load_interpretation_config({}).models
        registry = ProviderRegistry(env={"OPENAI_API_KEY": "sk-test"})
        critic = LlmDraftCritic(registry, models, timeout_seconds=5)

        with pytest.raises(CollaboratorError, match="anthropic/claude-sonnet-4-5"):
            await critic.assess(validate_draft(make_draft_payload()), diagnostic)


class TestPrompts:
    """Test prompt assembly."""

    def test_no_answers_section_without_answers(self, diagnostic):
        """Test optional prompt sections are omitted when empty."""
        message = build_generator_message(diagnostic, [], ["obj_forecasting"])
        assert "Clarifying answers" not in message
        assert "Rewrite instructions" not in message
