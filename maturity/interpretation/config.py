# FILE: maturity/interpretation/config.py
"""
Interpretation pipeline - Configuration

Built once at startup by load_interpretation_config() and handed to the
orchestrator. Nothing here is read lazily from the environment during a
request, and the objects are frozen so a running pipeline can't be
reconfigured underneath itself.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from maturity.actions.capacity import CapacityConfig


@dataclass(frozen=True)
class LoopLimits:
    """
    Circuit breakers for the clarification loop.
    """
    max_rounds: int = 2
    max_questions_total: int = 5
    max_questions_per_round: int = 3

    # Every generator/critic call counts, retries included
    max_ai_calls_per_session: int = 12

    def __post_init__(self):
        for name in ("max_rounds", "max_questions_total", "max_questions_per_round", "max_ai_calls_per_session"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.max_questions_per_round > self.max_questions_total:
            raise ValueError("max_questions_per_round cannot exceed max_questions_total")


@dataclass(frozen=True)
class CollaboratorPolicy:
    """
    Timeout/retry policy for DraftGenerator and DraftCritic calls.
    """
    timeout_seconds: float = 60.0

    # One retry with the same inputs, then the session fails
    retries: int = 1

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.retries < 0:
            raise ValueError("retries must be >= 0")

    @property
    def attempts(self) -> int:
        return self.retries + 1


@dataclass(frozen=True)
class AnswerTimingThresholds:
    """
    Answers faster than these (ms) are marked low-confidence.
    """
    free_text_ms: int = 2000
    long_mcq_ms: int = 1500  # mcq with more than 3 options
    default_ms: int = 800    # yes_no and short mcq


def infer_provider_from_model(model: str) -> Optional[str]:
    """
    Infer provider from model name when a role has no explicit provider.

    Returns None for unrecognised names; the registry then uses the first
    provider with a key.
    """
    model_lower = (model or "").lower()

    if "claude" in model_lower or "opus" in model_lower or "sonnet" in model_lower:
        return "anthropic"
    if model_lower.startswith(("gpt", "o1", "o3", "o4", "chatgpt")):
        return "openai"
    return None


@dataclass(frozen=True)
class ModelSelection:
    """
    Model and provider per collaborator role.

    The generator and critic run on different vendors by default, so each
    role carries its own provider (None = inferred from the model name).
    """
    generator_model: str = "gpt-4.1"
    generator_provider: Optional[str] = None
    critic_model: str = "claude-sonnet-4-5"
    critic_provider: Optional[str] = None
    max_tokens: int = 4096

    @property
    def generator_route(self) -> Tuple[Optional[str], str]:
        return (self.generator_provider or infer_provider_from_model(self.generator_model), self.generator_model)

    @property
    def critic_route(self) -> Tuple[Optional[str], str]:
        return (self.critic_provider or infer_provider_from_model(self.critic_model), self.critic_model)


@dataclass(frozen=True)
class InterpretationConfig:
    limits: LoopLimits = field(default_factory=LoopLimits)
    collaborators: CollaboratorPolicy = field(default_factory=CollaboratorPolicy)
    timing: AnswerTimingThresholds = field(default_factory=AnswerTimingThresholds)
    capacity: CapacityConfig = field(default_factory=CapacityConfig)
    models: ModelSelection = field(default_factory=ModelSelection)

    # In-flight sessions untouched for this long are treated as abandoned
    stale_after_seconds: int = 300


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'")


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{raw}'")


def _env_provider(env: Mapping[str, str], name: str) -> Optional[str]:
    return (env.get(name) or "").strip().lower() or None


def load_interpretation_config(env: Optional[Mapping[str, str]] = None) -> InterpretationConfig:
    """
    Build the config from environment variables.

    Call after load_dotenv(). Pass `env` explicitly in tests.
    """
    env = os.environ if env is None else env
    defaults_limits = LoopLimits()
    defaults_policy = CollaboratorPolicy()
    defaults_models = ModelSelection()

    limits = LoopLimits(
        max_rounds=_env_int(env, "MATURITY_MAX_ROUNDS", defaults_limits.max_rounds),
        max_questions_total=_env_int(env, "MATURITY_MAX_QUESTIONS_TOTAL", defaults_limits.max_questions_total),
        max_questions_per_round=_env_int(
            env, "MATURITY_MAX_QUESTIONS_PER_ROUND", defaults_limits.max_questions_per_round
        ),
        max_ai_calls_per_session=_env_int(env, "MATURITY_MAX_AI_CALLS", defaults_limits.max_ai_calls_per_session),
    )
    policy = CollaboratorPolicy(
        timeout_seconds=_env_float(
            env, "MATURITY_COLLABORATOR_TIMEOUT_SECONDS", defaults_policy.timeout_seconds
        ),
        retries=_env_int(env, "MATURITY_COLLABORATOR_RETRIES", defaults_policy.retries),
    )
    models = ModelSelection(
        generator_model=env.get("MATURITY_GENERATOR_MODEL") or defaults_models.generator_model,
        generator_provider=_env_provider(env, "MATURITY_GENERATOR_PROVIDER"),
        critic_model=env.get("MATURITY_CRITIC_MODEL") or defaults_models.critic_model,
        critic_provider=_env_provider(env, "MATURITY_CRITIC_PROVIDER"),
    )

    return InterpretationConfig(
        limits=limits,
        collaborators=policy,
        models=models,
        stale_after_seconds=_env_int(env, "MATURITY_STALE_AFTER_SECONDS", 300),
    )


__all__ = [
    "LoopLimits",
    "CollaboratorPolicy",
    "AnswerTimingThresholds",
    "ModelSelection",
    "infer_provider_from_model",
    "InterpretationConfig",
    "load_interpretation_config",
]
