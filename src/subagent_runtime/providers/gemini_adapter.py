"""
subagent-runtime — Google Gemini provider adapter

File: src/subagent_runtime/providers/gemini_adapter.py
Last updated: 2026-10-18

Purpose
- ``generateContent`` adapter for Gemini models via the ``google-genai`` SDK.

What is included in this file
- Lazy ``genai.Client`` construction; calls go through the client's ``aio`` surface.
- Role mapping (``assistant`` -> ``model``), system text as ``system_instruction``,
  and candidate/usage normalization.
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


class _GeminiModelsAPI(Protocol):
    async def generate_content(self, **kwargs: object) -> object: ...


class _GeminiAsyncNamespace(Protocol):
    models: _GeminiModelsAPI


class _GeminiClient(Protocol):
    aio: _GeminiAsyncNamespace


class GeminiProvider(BaseProvider):
    """Gemini adapter with optional SDK dependency and injected client support."""

    provider_name = "google"
    default_api_key_env = "GOOGLE_API_KEY"

    def _create_default_client(self, api_key: str) -> _GeminiClient:
        try:
            genai_module = importlib.import_module("google.genai")
        except ImportError as exc:
            raise ProviderUnconfiguredError(
                "google-genai SDK is not installed", provider=self.provider_name
            ) from exc

        client_factory = getattr(genai_module, "Client", None)
        if client_factory is None:
            raise ProviderUnconfiguredError(
                "google-genai SDK does not expose Client", provider=self.provider_name
            )

        init_kwargs: dict[str, object] = {"api_key": api_key}
        http_options: dict[str, object] = {}
        if self._base_url is not None:
            http_options["base_url"] = self._base_url
        if self._timeout_seconds is not None:
            # The SDK takes milliseconds.
            http_options["timeout"] = int(self._timeout_seconds * 1000)
        if http_options:
            init_kwargs["http_options"] = http_options
        return cast("_GeminiClient", client_factory(**init_kwargs))

    async def _create(
        self,
        client: object,
        *,
        messages: Sequence[ChatMessage],
        options: ChatOptions,
        model: str,
    ) -> object:
        gemini_client = cast("_GeminiClient", client)
        return await gemini_client.aio.models.generate_content(
            **_build_payload(messages, options, model=model)
        )

    def _normalize_reply(self, raw: object, *, requested_model: str) -> ProviderReply:
        candidates = read_sequence(raw, "candidates")
        if not candidates:
            raise ProviderServiceError(
                "response does not contain candidates", provider=self.provider_name
            )

        content = read_value(candidates[0], "content")
        parts = read_sequence(content, "parts") if content is not None else ()
        text_chunks = [text for part in parts if (text := read_str(part, "text")) is not None]

        usage_payload = read_value(raw, "usage_metadata")
        usage = TokenUsage()
        if usage_payload is not None:
            usage = TokenUsage(
                input_tokens=read_int(usage_payload, "prompt_token_count") or 0,
                output_tokens=read_int(usage_payload, "candidates_token_count") or 0,
            )
        return ProviderReply(
            text="".join(text_chunks),
            model=read_str(raw, "model_version") or requested_model,
            provider=self.provider_name,
            usage=usage,
        )


def _build_payload(
    messages: Sequence[ChatMessage], options: ChatOptions, *, model: str
) -> dict[str, object]:
    system_parts = [options.system_prompt] if options.system_prompt else []
    system_parts.extend(message.content for message in messages if message.role == "system")

    contents = [
        {
            "role": "model" if message.role == "assistant" else "user",
            "parts": [{"text": message.content}],
        }
        for message in messages
        if message.role != "system"
    ]
    config: dict[str, object] = {
        "max_output_tokens": options.max_output_tokens or DEFAULT_MAX_OUTPUT_TOKENS,
    }
    if system_parts:
        config["system_instruction"] = "\n\n".join(system_parts)
    return {"model": model, "contents": contents, "config": config}


__all__ = ["GeminiProvider"]
