"""
subagent-runtime — OpenAI-compatible provider adapter

File: src/subagent_runtime/providers/openai_adapter.py
Last updated: 2026-10-18

Purpose
- Chat-completions adapter for OpenAI and API-compatible backends (Groq).

What is included in this file
- Lazy ``AsyncOpenAI`` client construction with ``base_url`` override.
- System prompt prepended as a ``system`` message; reply/usage normalization.
"""

from __future__ import annotations

import importlib
from collections.abc import Mapping, Sequence
from typing import Protocol, cast

from subagent_runtime.constants import DEFAULT_MAX_OUTPUT_TOKENS, GROQ_BASE_URL
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

_DEFAULT_KEY_ENVS = {"openai": "OPENAI_API_KEY", "groq": "GROQ_API_KEY"}
_DEFAULT_BASE_URLS = {"groq": GROQ_BASE_URL}


class _ChatCompletionsAPI(Protocol):
    async def create(self, **kwargs: object) -> object: ...


class _ChatNamespace(Protocol):
    completions: _ChatCompletionsAPI


class _OpenAIClient(Protocol):
    chat: _ChatNamespace


class OpenAICompatibleProvider(BaseProvider):
    """Chat-completions adapter; ``name`` selects the backend (``openai`` or ``groq``)."""

    def __init__(
        self,
        *,
        name: str = "openai",
        model: str | None = None,
        api_key: str | None = None,
        api_key_env: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        client: object | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("name cannot be empty")
        self.provider_name = name.strip()
        self.default_api_key_env = _DEFAULT_KEY_ENVS.get(self.provider_name)
        super().__init__(
            model=model,
            api_key=api_key,
            api_key_env=api_key_env,
            base_url=base_url or _DEFAULT_BASE_URLS.get(self.provider_name),
            timeout_seconds=timeout_seconds,
            client=client,
            environ=environ,
        )

    def _create_default_client(self, api_key: str) -> _OpenAIClient:
        try:
            openai_module = importlib.import_module("openai")
        except ImportError as exc:
            raise ProviderUnconfiguredError(
                "openai SDK is not installed", provider=self.provider_name
            ) from exc

        async_openai = getattr(openai_module, "AsyncOpenAI", None)
        if async_openai is None:
            raise ProviderUnconfiguredError(
                "openai SDK does not expose AsyncOpenAI", provider=self.provider_name
            )
        return cast("_OpenAIClient", async_openai(**self._client_kwargs(api_key)))

    async def _create(
        self,
        client: object,
        *,
        messages: Sequence[ChatMessage],
        options: ChatOptions,
        model: str,
    ) -> object:
        openai_client = cast("_OpenAIClient", client)
        return await openai_client.chat.completions.create(
            **_build_payload(messages, options, model=model)
        )

    def _normalize_reply(self, raw: object, *, requested_model: str) -> ProviderReply:
        choices = read_sequence(raw, "choices")
        if not choices:
            raise ProviderServiceError(
                "response does not contain choices", provider=self.provider_name
            )

        message = read_value(choices[0], "message")
        text = read_value(message, "content") if message is not None else None

        usage_payload = read_value(raw, "usage")
        usage = TokenUsage()
        if usage_payload is not None:
            usage = TokenUsage(
                input_tokens=read_int(usage_payload, "prompt_tokens") or 0,
                output_tokens=read_int(usage_payload, "completion_tokens") or 0,
            )
        return ProviderReply(
            text=text if isinstance(text, str) else "",
            model=read_str(raw, "model") or requested_model,
            provider=self.provider_name,
            usage=usage,
        )


def _build_payload(
    messages: Sequence[ChatMessage], options: ChatOptions, *, model: str
) -> dict[str, object]:
    chat_messages: list[dict[str, object]] = []
    if options.system_prompt:
        chat_messages.append({"role": "system", "content": options.system_prompt})
    chat_messages.extend(message.to_dict() for message in messages)
    return {
        "model": model,
        "messages": chat_messages,
        "max_tokens": options.max_output_tokens or DEFAULT_MAX_OUTPUT_TOKENS,
    }


__all__ = ["OpenAICompatibleProvider"]
