# FILE: maturity/providers/__init__.py
from .registry import LlmCallResult, LlmCallStatus, ProviderRegistry

__all__ = ["LlmCallResult", "LlmCallStatus", "ProviderRegistry"]
