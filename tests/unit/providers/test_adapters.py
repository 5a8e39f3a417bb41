"""
Unit tests for the provider adapters (Anthropic, OpenAI-compatible, Gemini).

Coverage:
- Request payload mapping (system prompt placement, token limits, model resolution).
- Reply and usage normalization from SDK-shaped objects and plain mappings.
- Lazy SDK client construction with credentials, base URL and timeout.
- Error mapping of scripted SDK failures.
"""

from __future__ import annotations

import sys
from collections import deque
from dataclasses import dataclass, field
from types import SimpleNamespace

import pytest

from subagent_runtime.constants import GROQ_BASE_URL
from subagent_runtime.providers import (
    AnthropicProvider,
    ChatMessage,
    ChatOptions,
    GeminiProvider,
    OpenAICompatibleProvider,
    ProviderQuotaError,
    ProviderRateLimitError,
    ProviderServiceError,
    ProviderUnconfiguredError,
)


@dataclass(slots=True)
class _ScriptedCreate:
    outcomes: deque[object | Exception]
    calls: list[dict[str, object]] = field(default_factory=list)

    async def create(self, **kwargs: object) -> object:
        self.calls.append(dict(kwargs))
        if not self.outcomes:
            raise RuntimeError("scripted outcomes exhausted")
        outcome = self.outcomes.popleft()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@dataclass(slots=True)
class _FakeAnthropicClient:
    messages: _ScriptedCreate


@dataclass(slots=True)
class _FakeOpenAIChat:
    completions: _ScriptedCreate


@dataclass(slots=True)
class _FakeOpenAIClient:
    chat: _FakeOpenAIChat


class _StatusError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class _FakeGeminiModels:
    api: _ScriptedCreate

    async def generate_content(self, **kwargs: object) -> object:
        return await self.api.create(**kwargs)


def _anthropic(*outcomes: object | Exception) -> tuple[AnthropicProvider, _ScriptedCreate]:
    api = _ScriptedCreate(outcomes=deque(outcomes))
    return AnthropicProvider(client=_FakeAnthropicClient(messages=api)), api


def _openai(
    *outcomes: object | Exception, name: str = "openai"
) -> tuple[OpenAICompatibleProvider, _ScriptedCreate]:
    api = _ScriptedCreate(outcomes=deque(outcomes))
    client = _FakeOpenAIClient(chat=_FakeOpenAIChat(completions=api))
    return OpenAICompatibleProvider(name=name, client=client), api


def _gemini(*outcomes: object | Exception) -> tuple[GeminiProvider, _ScriptedCreate]:
    api = _ScriptedCreate(outcomes=deque(outcomes))
    client = SimpleNamespace(aio=SimpleNamespace(models=_FakeGeminiModels(api=api)))
    return GeminiProvider(client=client), api


def _anthropic_response(*texts: str, usage: object | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        model="claude-sonnet-4-20250514",
        content=[SimpleNamespace(type="text", text=text) for text in texts],
        usage=usage,
    )


def _openai_response(text: str | None, *, model: str = "gpt-4o") -> dict[str, object]:
    return {
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": text}}],
        "usage": {"prompt_tokens": 21, "completion_tokens": 8},
    }


_USER = ChatMessage(role="user", content="Summarize the inbox")


async def test_anthropic_payload_folds_system_text() -> None:
    provider, api = _anthropic(_anthropic_response("done"))
    messages = (ChatMessage(role="system", content="Be terse."), _USER)

    await provider.complete(
        messages, ChatOptions(model="haiku", system_prompt="You are a sub-agent.")
    )

    assert api.calls == [
        {
            "model": "claude-3-haiku-20240307",
            "max_tokens": 4096,
            "messages": [{"role": "user", "content": "Summarize the inbox"}],
            "system": "You are a sub-agent.\n\nBe terse.",
        }
    ]


async def test_anthropic_payload_omits_system_when_absent() -> None:
    provider, api = _anthropic(_anthropic_response("done"))

    await provider.complete((_USER,), ChatOptions(max_output_tokens=256))

    assert "system" not in api.calls[0]
    assert api.calls[0]["max_tokens"] == 256
    assert api.calls[0]["model"] == "claude-sonnet-4-20250514"


async def test_anthropic_reply_joins_text_blocks_and_reads_usage() -> None:
    response = _anthropic_response(
        "first", "second", usage=SimpleNamespace(input_tokens=120, output_tokens=40)
    )
    response.content.insert(1, SimpleNamespace(type="tool_use", id="tool-1"))
    provider, _ = _anthropic(response)

    reply = await provider.complete((_USER,), ChatOptions())

    assert reply.text == "first\nsecond"
    assert reply.provider == "anthropic"
    assert reply.model == "claude-sonnet-4-20250514"
    assert (reply.usage.input_tokens, reply.usage.output_tokens) == (120, 40)


async def test_anthropic_reply_without_content_is_service_error() -> None:
    provider, _ = _anthropic(SimpleNamespace(content=[], usage=None))

    with pytest.raises(ProviderServiceError, match="content blocks"):
        await provider.complete((_USER,), ChatOptions())


async def test_anthropic_credit_exhaustion_maps_to_quota() -> None:
    provider, _ = _anthropic(
        _StatusError("Your credit balance is too low to access the Anthropic API", 400)
    )

    with pytest.raises(ProviderQuotaError) as caught:
        await provider.complete((_USER,), ChatOptions())
    assert caught.value.skippable
    assert caught.value.http_status == 400


def test_anthropic_default_client_uses_sdk(monkeypatch: pytest.MonkeyPatch) -> None:
    created: list[dict[str, object]] = []

    def fake_client(**kwargs: object) -> object:
        created.append(kwargs)
        return SimpleNamespace(messages=None)

    monkeypatch.setitem(sys.modules, "anthropic", SimpleNamespace(AsyncAnthropic=fake_client))
    provider = AnthropicProvider(environ={"ANTHROPIC_API_KEY": "sk-ant-test"}, timeout_seconds=30)

    provider._ensure_client()

    assert created == [{"api_key": "sk-ant-test", "timeout": 30}]


def test_anthropic_missing_sdk_is_unconfigured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "anthropic", None)
    provider = AnthropicProvider(api_key="sk-ant-test")

    with pytest.raises(ProviderUnconfiguredError, match="not installed"):
        provider._ensure_client()


async def test_openai_payload_prepends_system_prompt() -> None:
    provider, api = _openai(_openai_response("ok"))

    reply = await provider.complete(
        (_USER,), ChatOptions(model="gpt-mini", system_prompt="You are a sub-agent.")
    )

    assert api.calls == [
        {
            "model": "gpt-4o-mini",
            "messages": [
                {"role": "system", "content": "You are a sub-agent."},
                {"role": "user", "content": "Summarize the inbox"},
            ],
            "max_tokens": 4096,
        }
    ]
    assert reply.text == "ok"
    assert reply.provider == "openai"
    assert (reply.usage.input_tokens, reply.usage.output_tokens) == (21, 8)


async def test_openai_ignores_anthropic_model_preference() -> None:
    provider, api = _openai(_openai_response("ok"))

    await provider.complete((_USER,), ChatOptions(model="claude-3-haiku-20240307"))

    assert api.calls[0]["model"] == "gpt-4o"


async def test_openai_reply_without_choices_is_service_error() -> None:
    provider, _ = _openai({"choices": []})

    with pytest.raises(ProviderServiceError, match="choices"):
        await provider.complete((_USER,), ChatOptions())


async def test_openai_null_content_becomes_empty_text() -> None:
    provider, _ = _openai(_openai_response(None))

    reply = await provider.complete((_USER,), ChatOptions())

    assert reply.text == ""


async def test_groq_rate_limit_maps_to_rate_limited() -> None:
    provider, api = _openai(_StatusError("Rate limit reached", 429), name="groq")

    with pytest.raises(ProviderRateLimitError):
        await provider.complete((_USER,), ChatOptions())
    assert api.calls[0]["model"] == "llama-3.3-70b-versatile"


def test_groq_defaults_key_env_and_base_url(monkeypatch: pytest.MonkeyPatch) -> None:
    created: list[dict[str, object]] = []

    def fake_client(**kwargs: object) -> object:
        created.append(kwargs)
        return SimpleNamespace(chat=None)

    monkeypatch.setitem(sys.modules, "openai", SimpleNamespace(AsyncOpenAI=fake_client))
    provider = OpenAICompatibleProvider(name="groq", environ={"GROQ_API_KEY": "gsk_test"})

    assert provider.is_configured()
    provider._ensure_client()

    assert created == [{"api_key": "gsk_test", "base_url": GROQ_BASE_URL}]
    assert provider.model == "llama-3.3-70b-versatile"


def test_openai_requires_its_own_key() -> None:
    provider = OpenAICompatibleProvider(environ={"GROQ_API_KEY": "gsk_test"})

    assert not provider.is_configured()
    with pytest.raises(ProviderUnconfiguredError, match="OPENAI_API_KEY"):
        provider._ensure_client()


def test_openai_compatible_requires_name() -> None:
    with pytest.raises(ValueError, match="name"):
        OpenAICompatibleProvider(name=" ")


def _gemini_response(*parts: str) -> SimpleNamespace:
    return SimpleNamespace(
        model_version="gemini-2.0-flash-001",
        candidates=[
            SimpleNamespace(content=SimpleNamespace(parts=[SimpleNamespace(text=p) for p in parts]))
        ],
        usage_metadata=SimpleNamespace(prompt_token_count=11, candidates_token_count=4),
    )


async def test_gemini_payload_maps_roles_and_system_instruction() -> None:
    provider, api = _gemini(_gemini_response("ok"))
    messages = (
        ChatMessage(role="system", content="Be terse."),
        _USER,
        ChatMessage(role="assistant", content="Which folder?"),
        ChatMessage(role="user", content="Primary"),
    )

    await provider.complete(
        messages, ChatOptions(model="flash", system_prompt="You are a sub-agent.")
    )

    assert api.calls == [
        {
            "model": "gemini-2.0-flash",
            "contents": [
                {"role": "user", "parts": [{"text": "Summarize the inbox"}]},
                {"role": "model", "parts": [{"text": "Which folder?"}]},
                {"role": "user", "parts": [{"text": "Primary"}]},
            ],
            "config": {
                "max_output_tokens": 4096,
                "system_instruction": "You are a sub-agent.\n\nBe terse.",
            },
        }
    ]


async def test_gemini_reply_joins_parts_and_reads_usage_metadata() -> None:
    provider, api = _gemini(_gemini_response("Summary: ", "all clear"))

    reply = await provider.complete((_USER,), ChatOptions(model="gemini-pro"))

    assert api.calls[0]["model"] == "gemini-1.5-pro"
    assert "system_instruction" not in api.calls[0]["config"]
    assert reply.text == "Summary: all clear"
    assert reply.provider == "google"
    assert reply.model == "gemini-2.0-flash-001"
    assert (reply.usage.input_tokens, reply.usage.output_tokens) == (11, 4)


async def test_gemini_ignores_anthropic_model_preference() -> None:
    provider, api = _gemini(_gemini_response("ok"))

    await provider.complete((_USER,), ChatOptions(model="claude-3-haiku-20240307"))

    assert api.calls[0]["model"] == "gemini-2.0-flash"


async def test_gemini_reply_without_candidates_is_service_error() -> None:
    provider, _ = _gemini(SimpleNamespace(candidates=[], usage_metadata=None))

    with pytest.raises(ProviderServiceError, match="candidates"):
        await provider.complete((_USER,), ChatOptions())


class _GenAIError(Exception):
    def __init__(self, code: int, status: str, message: str) -> None:
        super().__init__(f"{code} {status}. {message}")
        self.code = code
        self.status = status


async def test_gemini_resource_exhausted_maps_to_rate_limited() -> None:
    provider, _ = _gemini(_GenAIError(429, "RESOURCE_EXHAUSTED", "Quota exceeded for metric"))

    with pytest.raises(ProviderRateLimitError) as caught:
        await provider.complete((_USER,), ChatOptions())
    assert caught.value.http_status == 429
    assert caught.value.skippable


async def test_gemini_invalid_key_is_not_skippable() -> None:
    provider, _ = _gemini(_GenAIError(400, "INVALID_ARGUMENT", "API key not valid"))

    with pytest.raises(ProviderServiceError) as caught:
        await provider.complete((_USER,), ChatOptions())
    assert not caught.value.skippable


def test_gemini_default_client_uses_sdk(monkeypatch: pytest.MonkeyPatch) -> None:
    created: list[dict[str, object]] = []

    def fake_client(**kwargs: object) -> object:
        created.append(kwargs)
        return SimpleNamespace(aio=None)

    monkeypatch.setitem(sys.modules, "google.genai", SimpleNamespace(Client=fake_client))
    provider = GeminiProvider(environ={"GOOGLE_API_KEY": "AIza-test"}, timeout_seconds=30)

    assert provider.is_configured()
    provider._ensure_client()

    assert created == [{"api_key": "AIza-test", "http_options": {"timeout": 30000}}]
    assert provider.model == "gemini-2.0-flash"


def test_gemini_missing_sdk_is_unconfigured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "google.genai", None)
    provider = GeminiProvider(api_key="AIza-test")

    with pytest.raises(ProviderUnconfiguredError, match="not installed"):
        provider._ensure_client()


def test_gemini_requires_google_key() -> None:
    provider = GeminiProvider(environ={"OPENAI_API_KEY": "sk-test"})

    assert not provider.is_configured()
    with pytest.raises(ProviderUnconfiguredError, match="GOOGLE_API_KEY"):
        provider._ensure_client()
