"""
subagent-runtime — Anthropic provider adapter

File: src/subagent_runtime/providers/anthropic_adapter.py
Last updated: 2026-10-18

Purpose
- Anthropic messages API adapter (Claude-class models).

What is included in this file
- Lazy ``AsyncAnthropic`` client construction with optional injected client.
- Request payload mapping (system prompt passed as ``system``) and reply/usage normalization.
"""

from __future__ import annotations

import importlib
from collections.abc import Sequence
from typing import Protocol, cast

from subagent_runtime.constants import DEFAULT_MAX_OUTPUT_TOKENS
from subagent_runtime.domain.models import TokenUsage
from subagent_runtime.providers.base import (
    BaseProvider,
    ChatMessage,
    ChatOptions,
    ProviderReply,
    ProviderServiceError,
    ProviderUnconfiguredError,
    read_int,
    read_sequence,
    read_str,
    read_value,
)


class _AnthropicMessagesAPI(Protocol):
    async def create(self, **kwargs: object) -> object: ...


class _AnthropicClient(Protocol):
    messages: _AnthropicMessagesAPI


class AnthropicProvider(BaseProvider):
    """Anthropic messages adapter with optional SDK dependency and injected client support."""

    provider_name = "anthropic"
    default_api_key_env = "ANTHROPIC_API_KEY"

    def _create_default_client(self, api_key: str) -> _AnthropicClient:
        try:
            anthropic_module = importlib.import_module("anthropic")
        except ImportError as exc:
            raise ProviderUnconfiguredError(
                "anthropic SDK is not installed", provider=self.provider_name
            ) from exc

        async_anthropic = getattr(anthropic_module, "AsyncAnthropic", None)
        if async_anthropic is None:
            raise ProviderUnconfiguredError(
                "anthropic SDK does not expose AsyncAnthropic", provider=self.provider_name
            )
        return cast("_AnthropicClient", async_anthropic(**self._client_kwargs(api_key)))

    async def _create(
        self,
        client: object,
        *,
        messages: Sequence[ChatMessage],
        options: ChatOptions,
        model: str,
    ) -> object:
        anthropic_client = cast("_AnthropicClient", client)
        return await anthropic_client.messages.create(
            **_build_payload(messages, options, model=model)
        )

    def _normalize_reply(self, raw: object, *, requested_model: str) -> ProviderReply:
        blocks = read_sequence(raw, "content")
        if not blocks:
            raise ProviderServiceError(
                "response does not contain any content blocks", provider=self.provider_name
            )

        text_chunks: list[str] = []
        for block in blocks:
            if (read_str(block, "type") or "").lower() != "text":
                continue
            text = read_str(block, "text")
            if text is not None:
                text_chunks.append(text)

        usage_payload = read_value(raw, "usage")
        usage = TokenUsage()
        if usage_payload is not None:
            usage = TokenUsage(
                input_tokens=read_int(usage_payload, "input_tokens") or 0,
                output_tokens=read_int(usage_payload, "output_tokens") or 0,
            )
        return ProviderReply(
            text="\n".join(text_chunks),
            model=read_str(raw, "model") or requested_model,
            provider=self.provider_name,
            usage=usage,
        )


def _build_payload(
    messages: Sequence[ChatMessage], options: ChatOptions, *, model: str
) -> dict[str, object]:
    # The messages API takes system text out-of-band; fold inline system turns into it.
    system_parts = [options.system_prompt] if options.system_prompt else []
    system_parts.extend(message.content for message in messages if message.role == "system")

    payload: dict[str, object] = {
        "model": model,
        "max_tokens": options.max_output_tokens or DEFAULT_MAX_OUTPUT_TOKENS,
        "messages": [message.to_dict() for message in messages if message.role != "system"],
    }
    if system_parts:
        payload["system"] = "\n\n".join(system_parts)
    return payload


AnthropicAdapter = AnthropicProvider

__all__ = ["AnthropicAdapter", "AnthropicProvider"]
