# FILE: tests/test_config.py
"""
Tests for interpretation config loading and validation.
"""

import dataclasses
import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest

from maturity.interpretation.config import (
    CollaboratorPolicy,
    LoopLimits,
    ModelSelection,
    infer_provider_from_model,
    load_interpretation_config,
)


class TestDefaults:
    """Test values with an empty environment."""

    def test_empty_env_gives_defaults(self):
        """Test every limit and threshold falls back to its default."""
        config = load_interpretation_config({})
        assert config.limits.max_rounds == 2
        assert config.limits.max_questions_total == 5
        assert config.limits.max_questions_per_round == 3
        assert config.limits.max_ai_calls_per_session == 12
        assert config.collaborators.timeout_seconds == 60.0
        assert config.collaborators.attempts == 2
        assert config.timing.free_text_ms == 2000
        assert config.stale_after_seconds == 300
        assert config.models.generator_provider is None
        assert config.models.critic_provider is None

    def test_default_roles_reach_their_own_vendor(self):
        """Test the default generator and critic models route to different providers."""
        models = load_interpretation_config({}).models
        assert models.generator_route == ("openai", "gpt-4.1")
        assert models.critic_route == ("anthropic", "claude-sonnet-4-5")


class TestEnvOverrides:
    """Test MATURITY_* environment variables."""

    def test_overrides(self):
        """Test each variable lands on its config field."""
        config = load_interpretation_config({
            "MATURITY_MAX_ROUNDS": "3",
            "MATURITY_MAX_QUESTIONS_TOTAL": "6",
            "MATURITY_MAX_QUESTIONS_PER_ROUND": "2",
            "MATURITY_MAX_AI_CALLS": "20",
            "MATURITY_COLLABORATOR_TIMEOUT_SECONDS": "12.5",
            "MATURITY_COLLABORATOR_RETRIES": "0",
            "MATURITY_GENERATOR_PROVIDER": " Anthropic ",
            "MATURITY_GENERATOR_MODEL": "gpt-x",
            "MATURITY_CRITIC_MODEL": "o3-mini",
            "MATURITY_STALE_AFTER_SECONDS": "60",
        })
        assert config.limits.max_rounds == 3
        assert config.limits.max_questions_total == 6
        assert config.limits.max_questions_per_round == 2
        assert config.limits.max_ai_calls_per_session == 20
        assert config.collaborators.timeout_seconds == 12.5
        assert config.collaborators.attempts == 1
        assert config.models.generator_route == ("anthropic", "gpt-x")
        assert config.models.critic_route == ("openai", "o3-mini")
        assert config.stale_after_seconds == 60

    def test_critic_provider_override(self):
        """Test an explicit critic provider wins over the model-name inference."""
        config = load_interpretation_config({"MATURITY_CRITIC_PROVIDER": "openai"})
        assert config.models.critic_route == ("openai", "claude-sonnet-4-5")

    def test_blank_values_use_defaults(self):
        """Test whitespace-only values are treated as unset."""
        config = load_interpretation_config({"MATURITY_MAX_ROUNDS": "  "})
        assert config.limits.max_rounds == 2

    def test_non_integer_rejected(self):
        """Test a non-numeric limit fails at load time with the variable name."""
        with pytest.raises(ValueError, match="MATURITY_MAX_ROUNDS"):
            load_interpretation_config({"MATURITY_MAX_ROUNDS": "two"})


class TestProviderInference:
    """Test infer_provider_from_model."""

    @pytest.mark.parametrize(
        "model,provider",
        [
            ("claude-sonnet-4-5", "anthropic"),
            ("claude-opus-4", "anthropic"),
            ("gpt-4.1", "openai"),
            ("GPT-5.1", "openai"),
            ("o3-mini", "openai"),
            ("my-finetune", None),
        ],
    )
    def test_infer(self, model, provider):
        """Test model names map to their vendor, unknown names to None."""
        assert infer_provider_from_model(model) == provider

    def test_unknown_model_leaves_provider_open(self):
        """Test an unrecognised model routes to whichever provider is available."""
        assert ModelSelection(generator_model="local-model").generator_route == (None, "local-model")


class TestValidation:
    """Test __post_init__ checks."""

    def test_per_round_cannot_exceed_total(self):
        """Test the per-round cap may not exceed the session cap."""
        with pytest.raises(ValueError):
            LoopLimits(max_questions_total=2, max_questions_per_round=3)

    def test_negative_limits_rejected(self):
        """Test negative limits are refused."""
        with pytest.raises(ValueError):
            LoopLimits(max_rounds=-1)

    def test_timeout_must_be_positive(self):
        """Test a zero timeout is refused."""
        with pytest.raises(ValueError):
            CollaboratorPolicy(timeout_seconds=0)

    def test_config_is_frozen(self):
        """Test limits cannot be changed after construction."""
        limits = LoopLimits()
        with pytest.raises(dataclasses.FrozenInstanceError):
            limits.max_rounds = 9
