"""
subagent-runtime — provider adapters

File: src/subagent_runtime/providers/__init__.py
Last updated: 2026-10-18

Purpose
- Public provider boundary: protocol, request/reply models, typed errors and concrete adapters.
"""

from subagent_runtime.providers.anthropic_adapter import AnthropicAdapter, AnthropicProvider
from subagent_runtime.providers.base import (
    BaseProvider,
    ChatMessage,
    ChatOptions,
    FailureKind,
    ProviderError,
    ProviderProtocol,
    ProviderQuotaError,
    ProviderRateLimitError,
    ProviderReply,
    ProviderServiceError,
    ProviderUnconfiguredError,
    classify_failure,
    error_for_kind,
)
from subagent_runtime.providers.catalog import (
    MODEL_CATALOGS,
    default_model_for,
    resolve_model,
)
from subagent_runtime.providers.gemini_adapter import GeminiProvider
from subagent_runtime.providers.openai_adapter import OpenAICompatibleProvider

__all__ = [
    "AnthropicAdapter",
    "AnthropicProvider",
    "BaseProvider",
    "ChatMessage",
    "ChatOptions",
    "FailureKind",
    "GeminiProvider",
    "MODEL_CATALOGS",
    "OpenAICompatibleProvider",
    "ProviderError",
    "ProviderProtocol",
    "ProviderQuotaError",
    "ProviderRateLimitError",
    "ProviderReply",
    "ProviderServiceError",
    "ProviderUnconfiguredError",
    "classify_failure",
    "default_model_for",
    "error_for_kind",
    "resolve_model",
]
