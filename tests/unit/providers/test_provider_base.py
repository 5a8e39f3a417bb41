"""
Unit tests for the provider boundary: failure classification and shared adapter plumbing.

Coverage:
- Status code and vocabulary based failure classification.
- Normalized error taxonomy and the ``skippable`` flag the router relies on.
- SDK exception mapping, credential lookup and cooperative cancellation in ``BaseProvider``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from types import SimpleNamespace

import pytest
from hypothesis import given
from hypothesis import strategies as st

from subagent_runtime.domain.models import TokenUsage
from subagent_runtime.providers.base import (
    BaseProvider,
    ChatMessage,
    ChatOptions,
    FailureKind,
    ProviderError,
    ProviderQuotaError,
    ProviderRateLimitError,
    ProviderReply,
    ProviderServiceError,
    ProviderUnconfiguredError,
    classify_failure,
    error_for_kind,
    exception_detail,
    read_status_code,
)
from subagent_runtime.utils.concurrency import CancellationToken


class _SdkStatusError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None, body: object = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitError(Exception):
    """Mimics SDK rate-limit classes that carry no status attribute."""


class _EchoProvider(BaseProvider):
    provider_name = "anthropic"
    default_api_key_env = "ECHO_API_KEY"

    def __init__(self, *, outcome: object = "pong", delay: float = 0.0, **kwargs: object):
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self.outcome = outcome
        self.delay = delay
        self.created_with: list[str] = []
        self.requests: list[str] = []

    def _create_default_client(self, api_key: str) -> object:
        self.created_with.append(api_key)
        return SimpleNamespace(api_key=api_key)

    async def _create(
        self,
        client: object,
        *,
        messages: Sequence[ChatMessage],
        options: ChatOptions,
        model: str,
    ) -> object:
        self.requests.append(model)
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    def _normalize_reply(self, raw: object, *, requested_model: str) -> ProviderReply:
        return ProviderReply(
            text=str(raw),
            model=requested_model,
            provider=self.provider_name,
            usage=TokenUsage(input_tokens=3, output_tokens=1),
        )


_MESSAGES = (ChatMessage(role="user", content="ping"),)


@pytest.mark.parametrize(
    ("status", "detail", "expected"),
    [
        (402, "payment required", FailureKind.QUOTA_EXCEEDED),
        (429, "slow down", FailureKind.RATE_LIMITED),
        (400, "Your credit balance is too low to access the API", FailureKind.QUOTA_EXCEEDED),
        (None, "insufficient_quota: check your plan and billing", FailureKind.QUOTA_EXCEEDED),
        (None, "Rate limit reached for requests", FailureKind.RATE_LIMITED),
        (503, "Too Many Requests", FailureKind.RATE_LIMITED),
        (401, "invalid x-api-key", FailureKind.OTHER),
        (403, "insufficient permissions for this model", FailureKind.OTHER),
        (None, "Insufficient funds on the account", FailureKind.QUOTA_EXCEEDED),
        (500, "internal server error", FailureKind.OTHER),
        (None, None, FailureKind.OTHER),
    ],
)
def test_classify_failure(status: int | None, detail: str | None, expected: FailureKind) -> None:
    assert classify_failure(status, detail) is expected


@given(st.text(max_size=200))
def test_status_codes_win_over_wording(detail: str) -> None:
    assert classify_failure(402, detail) is FailureKind.QUOTA_EXCEEDED
    assert classify_failure(429, detail) is FailureKind.RATE_LIMITED


@pytest.mark.parametrize(
    ("kind", "error_type", "skippable"),
    [
        (FailureKind.QUOTA_EXCEEDED, ProviderQuotaError, True),
        (FailureKind.RATE_LIMITED, ProviderRateLimitError, True),
        (FailureKind.UNCONFIGURED, ProviderUnconfiguredError, False),
        (FailureKind.OTHER, ProviderServiceError, False),
    ],
)
def test_error_for_kind_builds_typed_errors(
    kind: FailureKind, error_type: type[ProviderError], skippable: bool
) -> None:
    error = error_for_kind(kind, provider="openai", detail="  boom \n  again ")

    assert isinstance(error, error_type)
    assert error.kind is kind
    assert error.skippable is skippable
    assert error.provider == "openai"
    assert error.detail == "boom again"
    assert "kind=" + kind.value in str(error)


def test_exception_detail_prefers_structured_body_message() -> None:
    exc = _SdkStatusError(
        "Error code: 400",
        status_code=400,
        body={"error": {"type": "invalid_request_error", "message": "credit  balance is too low"}},
    )
    assert exception_detail(exc) == "credit balance is too low"
    assert exception_detail(RuntimeError()) == "RuntimeError"


def test_read_status_code_falls_back_to_response() -> None:
    exc = RuntimeError("wrapped")
    exc.response = SimpleNamespace(status_code=429)  # type: ignore[attr-defined]
    assert read_status_code(exc) == 429
    assert read_status_code(RuntimeError("plain")) is None


def test_read_status_code_accepts_numeric_code_attribute() -> None:
    exc = RuntimeError("429 RESOURCE_EXHAUSTED")
    exc.code = 429  # type: ignore[attr-defined]
    exc.status = "RESOURCE_EXHAUSTED"  # type: ignore[attr-defined]
    assert read_status_code(exc) == 429


def test_chat_message_normalizes_role_and_rejects_unknown() -> None:
    assert ChatMessage(role=" User ", content="hi").role == "user"
    with pytest.raises(ValueError, match="role must be one of"):
        ChatMessage(role="tool", content="hi")


def test_chat_options_rejects_non_positive_token_limit() -> None:
    with pytest.raises(ValueError, match="max_output_tokens"):
        ChatOptions(max_output_tokens=0)


def test_is_configured_reads_injected_environment() -> None:
    assert _EchoProvider(environ={"ECHO_API_KEY": "key-123"}).is_configured()
    assert not _EchoProvider(environ={"ECHO_API_KEY": "   "}).is_configured()
    assert _EchoProvider(environ={}, api_key="inline").is_configured()
    assert _EchoProvider(environ={}, client=object()).is_configured()
    assert _EchoProvider(environ={"OTHER": "x"}, api_key_env="OTHER").is_configured()


async def test_complete_builds_client_lazily_and_resolves_model() -> None:
    provider = _EchoProvider(environ={"ECHO_API_KEY": " key-123 "})

    reply = await provider.complete(_MESSAGES, ChatOptions(model="haiku"))

    assert reply.text == "pong"
    assert reply.model == "claude-3-haiku-20240307"
    assert provider.created_with == ["key-123"]
    await provider.complete(_MESSAGES, ChatOptions())
    assert provider.created_with == ["key-123"]
    assert provider.requests[-1] == "claude-sonnet-4-20250514"


async def test_complete_without_credentials_is_unconfigured() -> None:
    provider = _EchoProvider(environ={})

    with pytest.raises(ProviderUnconfiguredError, match="ECHO_API_KEY"):
        await provider.complete(_MESSAGES, ChatOptions())


async def test_complete_rejects_empty_messages() -> None:
    with pytest.raises(ValueError, match="messages"):
        await _EchoProvider(api_key="k").complete((), ChatOptions())


@pytest.mark.parametrize(
    ("exc", "error_type", "status"),
    [
        (_SdkStatusError("Error code: 429", status_code=429), ProviderRateLimitError, 429),
        (_SdkStatusError("billing hard limit reached", status_code=400), ProviderQuotaError, 400),
        (RateLimitError("throttled"), ProviderRateLimitError, None),
        (_SdkStatusError("bad gateway", status_code=502), ProviderServiceError, 502),
        (ConnectionError("connection reset"), ProviderServiceError, None),
    ],
)
async def test_sdk_exceptions_are_mapped_to_failure_kinds(
    exc: Exception, error_type: type[ProviderError], status: int | None
) -> None:
    provider = _EchoProvider(api_key="k", outcome=exc)

    with pytest.raises(error_type) as caught:
        await provider.complete(_MESSAGES, ChatOptions())

    assert caught.value.provider == "anthropic"
    assert caught.value.http_status == status
    assert caught.value.__cause__ is exc


async def test_complete_stops_when_token_is_cancelled() -> None:
    provider = _EchoProvider(api_key="k", delay=5.0)
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.01, token.cancel, "deadline exceeded")

    with pytest.raises(asyncio.CancelledError):
        await provider.complete(_MESSAGES, ChatOptions(), cancel_token=token)


def test_invalid_timeout_is_rejected() -> None:
    with pytest.raises(ValueError, match="timeout_seconds"):
        _EchoProvider(timeout_seconds=0)
