# FILE: maturity/providers/registry.py
"""
Provider Registry

- Single async entrypoint: ProviderRegistry.llm_call(...)
- OpenAI (AsyncOpenAI) and Anthropic (AsyncAnthropic), used when the key
  is set and the SDK imports
- Never raises for provider failures: callers get an LlmCallResult with a
  non-success status and decide what that means for them

NOTE (OpenAI token param drift):
- Newer OpenAI models (gpt-5.*, o-series) reject `max_tokens` and need
  `max_completion_tokens`; they also only accept the default temperature.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


class LlmCallStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    INVALID_REQUEST = "invalid_request"


@dataclass
class LlmUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class LlmCallResult:
    status: LlmCallStatus
    provider_id: str
    model_id: str
    content: str = ""
    usage: LlmUsage = field(default_factory=LlmUsage)
    raw_response: Optional[dict] = None
    error_message: Optional[str] = None

    def is_success(self) -> bool:
        return self.status == LlmCallStatus.SUCCESS


@dataclass(frozen=True)
class ProviderConfig:
    provider_id: str
    display_name: str
    env_key_name: str


PROVIDERS: Dict[str, ProviderConfig] = {
    "openai": ProviderConfig("openai", "OpenAI", "OPENAI_API_KEY"),
    "anthropic": ProviderConfig("anthropic", "Anthropic", "ANTHROPIC_API_KEY"),
}


def _safe_json(obj: Any) -> Any:
    try:
        json.dumps(obj)
        return obj
    except (TypeError, ValueError):
        return str(obj)


def _normalize_messages_for_openai(messages: List[dict], system_prompt: Optional[str]) -> List[dict]:
    out: List[dict] = []
    if system_prompt:
        out.append({"role": "system", "content": system_prompt})
    for m in messages:
        role = m.get("role")
        content = str(m.get("content", ""))
        out.append({"role": role if role in ("system", "user", "assistant") else "user", "content": content})
    return out


def _normalize_messages_for_anthropic(messages: List[dict], system_prompt: Optional[str]) -> Tuple[str, List[dict]]:
    sys_parts: List[str] = []
    if system_prompt:
        sys_parts.append(system_prompt)

    user_assistant: List[dict] = []
    for m in messages:
        role = m.get("role")
        if role == "system":
            sys_parts.append(str(m.get("content", "")))
        elif role in ("user", "assistant"):
            user_assistant.append({"role": role, "content": str(m.get("content", ""))})

    return ("\n\n".join([p for p in sys_parts if p]).strip(), user_assistant)


def _openai_token_param_name(model_id: str) -> str:
    m = (model_id or "").strip().lower()
    if m.startswith(("gpt-5", "o1", "o3", "o4")):
        return "max_completion_tokens"
    return "max_tokens"


def _supports_temperature(model_id: str) -> bool:
    """GPT-5.x and o-series only accept temperature=1."""
    m = (model_id or "").strip().lower()
    return not m.startswith(("gpt-5", "o1", "o3", "o4"))


class ProviderRegistry:
    def __init__(self, env: Optional[Mapping[str, str]] = None):
        self._env = os.environ if env is None else env

    def _api_key(self, provider_id: str) -> str:
        cfg = PROVIDERS.get(provider_id)
        return (self._env.get(cfg.env_key_name, "") if cfg else "").strip()

    def is_provider_available(self, provider_id: str) -> bool:
        if provider_id not in PROVIDERS or not self._api_key(provider_id):
            return False
        try:
            if provider_id == "openai":
                from openai import AsyncOpenAI  # noqa: F401
            elif provider_id == "anthropic":
                import anthropic  # noqa: F401
        except ImportError:
            return False
        return True

    def pick_default_provider(self) -> Optional[str]:
        for pid in ("openai", "anthropic"):
            if self.is_provider_available(pid):
                return pid
        return None

    async def llm_call(
        self,
        provider_id: Optional[str],
        model_id: str,
        messages: List[dict],
        system_prompt: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 2048,
        timeout_seconds: float = 60,
    ) -> LlmCallResult:
        chosen = provider_id or self.pick_default_provider()
        if not chosen:
            return LlmCallResult(
                status=LlmCallStatus.PROVIDER_UNAVAILABLE,
                provider_id=str(provider_id or "none"),
                model_id=model_id,
                error_message="No providers available (missing API keys and/or SDKs).",
            )

        if not self.is_provider_available(chosen):
            return LlmCallResult(
                status=LlmCallStatus.PROVIDER_UNAVAILABLE,
                provider_id=chosen,
                model_id=model_id,
                error_message=f"Provider unavailable: {chosen}",
            )

        try:
            if chosen == "openai":
                return await self._call_openai(
                    model_id, messages, system_prompt, temperature, max_tokens, timeout_seconds
                )
            if chosen == "anthropic":
                return await self._call_anthropic(
                    model_id, messages, system_prompt, temperature, max_tokens, timeout_seconds
                )
            return LlmCallResult(
                status=LlmCallStatus.INVALID_REQUEST,
                provider_id=chosen,
                model_id=model_id,
                error_message=f"Unknown provider: {chosen}",
            )
        except Exception as exc:
            logger.exception(f"[registry] llm_call failed: {exc}")
            return LlmCallResult(
                status=LlmCallStatus.ERROR,
                provider_id=chosen,
                model_id=model_id,
                error_message=str(exc),
            )

    async def _call_openai(
        self,
        model_id: str,
        messages: List[dict],
        system_prompt: Optional[str],
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
    ) -> LlmCallResult:
        from openai import AsyncOpenAI

        client = AsyncOpenAI(api_key=self._api_key("openai"), timeout=timeout_seconds)

        kwargs: Dict[str, Any] = dict(
            model=model_id,
            messages=_normalize_messages_for_openai(messages, system_prompt),
            response_format={"type": "json_object"},
        )
        kwargs[_openai_token_param_name(model_id)] = int(max_tokens)
        if _supports_temperature(model_id):
            kwargs["temperature"] = float(temperature)

        resp = await client.chat.completions.create(**kwargs)

        content = ""
        if resp.choices:
            content = (resp.choices[0].message.content or "").strip()

        usage = LlmUsage()
        if getattr(resp, "usage", None):
            usage.prompt_tokens = getattr(resp.usage, "prompt_tokens", 0) or 0
            usage.completion_tokens = getattr(resp.usage, "completion_tokens", 0) or 0
            usage.total_tokens = getattr(resp.usage, "total_tokens", 0) or (
                usage.prompt_tokens + usage.completion_tokens
            )

        return LlmCallResult(
            status=LlmCallStatus.SUCCESS,
            provider_id="openai",
            model_id=model_id,
            content=content,
            usage=usage,
            raw_response=_safe_json(resp.model_dump() if hasattr(resp, "model_dump") else {}),
        )

    async def _call_anthropic(
        self,
        model_id: str,
        messages: List[dict],
        system_prompt: Optional[str],
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
    ) -> LlmCallResult:
        import anthropic

        client = anthropic.AsyncAnthropic(api_key=self._api_key("anthropic"), timeout=timeout_seconds)

        final_system, user_assistant_messages = _normalize_messages_for_anthropic(messages, system_prompt)
        create_kwargs: Dict[str, Any] = dict(
            model=model_id,
            messages=user_assistant_messages,
            temperature=temperature,
            max_tokens=min(max_tokens, 128000),
        )
        if final_system:
            create_kwargs["system"] = final_system

        resp = await client.messages.create(**create_kwargs)

        text_parts = [getattr(b, "text", "") for b in (resp.content or []) if getattr(b, "type", None) == "text"]
        content = "\n".join([t for t in text_parts if t]).strip()

        usage = LlmUsage(
            prompt_tokens=getattr(resp.usage, "input_tokens", 0) if getattr(resp, "usage", None) else 0,
            completion_tokens=getattr(resp.usage, "output_tokens", 0) if getattr(resp, "usage", None) else 0,
        )
        usage.total_tokens = usage.prompt_tokens + usage.completion_tokens

        return LlmCallResult(
            status=LlmCallStatus.SUCCESS,
            provider_id="anthropic",
            model_id=model_id,
            content=content,
            usage=usage,
            raw_response=_safe_json(resp.model_dump() if hasattr(resp, "model_dump") else {}),
        )


__all__ = [
    "LlmCallStatus",
    "LlmUsage",
    "LlmCallResult",
    "ProviderConfig",
    "PROVIDERS",
    "ProviderRegistry",
]
