"""
subagent-runtime — provider base models and shared utilities

File: src/subagent_runtime/providers/base.py
Last updated: 2026-10-18

Purpose
- Provider boundary contract and common request/reply models for chat completions.

What is included in this file
- Chat message/option/reply models.
- Error taxonomy with failure kinds decided at the adapter boundary.
- ``BaseProvider``: credential resolution, lazy SDK client, cancellation and
  exception mapping shared by concrete adapters.

Functional requirements
- A quota or rate-limit failure must be distinguishable from every other failure
  without inspecting SDK exception types outside the adapter.
"""

from __future__ import annotations

import abc
import os
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final, Protocol, TypeAlias, cast, runtime_checkable

from subagent_runtime.domain.models import TokenUsage
from subagent_runtime.providers.catalog import default_model_for, resolve_model
from subagent_runtime.utils.concurrency import CancellationToken, race_cancellation

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

CHAT_ROLES: Final[frozenset[str]] = frozenset({"user", "assistant", "system"})

_QUOTA_VOCABULARY: Final[re.Pattern[str]] = re.compile(
    r"credit|billing|quota|insufficient[_ ](?:credit|funds|quota|balance)|payment", re.IGNORECASE
)
_RATE_LIMIT_VOCABULARY: Final[re.Pattern[str]] = re.compile(
    r"rate[\s_-]?limit|too many requests", re.IGNORECASE
)


def _validate_non_empty_str(value: str, field_name: str, *, strip: bool = True) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    normalized = value.strip() if strip else value
    if not normalized:
        raise ValueError(f"{field_name} cannot be empty")
    return normalized


def _validate_optional_str(value: str | None, field_name: str) -> str | None:
    if value is None:
        return None
    return _validate_non_empty_str(value, field_name)


@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: str
    content: str

    def __post_init__(self) -> None:
        role = _validate_non_empty_str(self.role, "role").lower()
        if role not in CHAT_ROLES:
            raise ValueError(f"role must be one of {sorted(CHAT_ROLES)}, got {self.role!r}")
        object.__setattr__(self, "role", role)
        if not isinstance(self.content, str):
            raise TypeError("content must be a string")

    def to_dict(self) -> dict[str, JSONValue]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True, slots=True)
class ChatOptions:
    """Per-request options. ``None`` lets each provider apply its own default."""

    model: str | None = None
    max_output_tokens: int | None = None
    system_prompt: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "model", _validate_optional_str(self.model, "model"))
        if self.max_output_tokens is not None and (
            isinstance(self.max_output_tokens, bool)
            or not isinstance(self.max_output_tokens, int)
            or self.max_output_tokens <= 0
        ):
            raise ValueError("max_output_tokens must be a positive integer")
        if self.system_prompt is not None and not isinstance(self.system_prompt, str):
            raise TypeError("system_prompt must be a string")


@dataclass(frozen=True, slots=True)
class ProviderReply:
    text: str
    model: str
    provider: str
    usage: TokenUsage = field(default_factory=TokenUsage)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "text": self.text,
            "model": self.model,
            "provider": self.provider,
            "usage": self.usage.to_dict(),
        }


class FailureKind(StrEnum):
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    UNCONFIGURED = "unconfigured"
    OTHER = "other"


_SKIPPABLE_KINDS: Final[frozenset[FailureKind]] = frozenset(
    {FailureKind.QUOTA_EXCEEDED, FailureKind.RATE_LIMITED}
)


class ProviderError(RuntimeError):
    """Base normalized provider error with machine-readable fields."""

    def __init__(
        self,
        *,
        provider: str,
        kind: FailureKind | str,
        detail: str,
        http_status: int | None = None,
    ) -> None:
        self.provider = _validate_non_empty_str(provider, "provider")
        self.kind = FailureKind(kind)
        self.detail = _normalize_detail(detail)
        self.http_status = http_status

        parts = [f"provider={self.provider}", f"kind={self.kind.value}"]
        if self.http_status is not None:
            parts.append(f"http_status={self.http_status}")
        parts.append(f"detail={self.detail}")
        super().__init__(" ".join(parts))

    @property
    def skippable(self) -> bool:
        """True when the router should move on to the next provider immediately."""
        return self.kind in _SKIPPABLE_KINDS


class ProviderQuotaError(ProviderError):
    """Billing, credit or quota exhaustion."""

    def __init__(
        self, detail: str, *, provider: str = "provider", http_status: int | None = 402
    ) -> None:
        super().__init__(
            provider=provider,
            kind=FailureKind.QUOTA_EXCEEDED,
            detail=detail,
            http_status=http_status,
        )


class ProviderRateLimitError(ProviderError):
    """Provider rate-limit responses."""

    def __init__(
        self, detail: str, *, provider: str = "provider", http_status: int | None = 429
    ) -> None:
        super().__init__(
            provider=provider,
            kind=FailureKind.RATE_LIMITED,
            detail=detail,
            http_status=http_status,
        )


class ProviderUnconfiguredError(ProviderError):
    """Missing credential or SDK; the provider cannot be called at all."""

    def __init__(self, detail: str, *, provider: str = "provider") -> None:
        super().__init__(provider=provider, kind=FailureKind.UNCONFIGURED, detail=detail)


class ProviderServiceError(ProviderError):
    """Every other provider failure (auth, bad request, 5xx, malformed reply...)."""

    def __init__(
        self, detail: str, *, provider: str = "provider", http_status: int | None = None
    ) -> None:
        super().__init__(
            provider=provider,
            kind=FailureKind.OTHER,
            detail=detail,
            http_status=http_status,
        )


def classify_failure(status: int | None, detail: str | None) -> FailureKind:
    """Map an HTTP status and error text to a ``FailureKind``.

    Status codes win over wording: 402 is quota, 429 is rate limiting.
    Otherwise billing vocabulary marks quota and throttling vocabulary marks
    rate limiting; anything else is ``OTHER``.
    """
    if status == 402:
        return FailureKind.QUOTA_EXCEEDED
    if status == 429:
        return FailureKind.RATE_LIMITED
    text = detail or ""
    if _QUOTA_VOCABULARY.search(text):
        return FailureKind.QUOTA_EXCEEDED
    if _RATE_LIMIT_VOCABULARY.search(text):
        return FailureKind.RATE_LIMITED
    return FailureKind.OTHER


def error_for_kind(
    kind: FailureKind, *, provider: str, detail: str, http_status: int | None = None
) -> ProviderError:
    if kind is FailureKind.QUOTA_EXCEEDED:
        return ProviderQuotaError(detail, provider=provider, http_status=http_status)
    if kind is FailureKind.RATE_LIMITED:
        return ProviderRateLimitError(detail, provider=provider, http_status=http_status)
    if kind is FailureKind.UNCONFIGURED:
        return ProviderUnconfiguredError(detail, provider=provider)
    return ProviderServiceError(detail, provider=provider, http_status=http_status)


@runtime_checkable
class ProviderProtocol(Protocol):
    """Boundary contract implemented by every provider the router can call."""

    @property
    def name(self) -> str: ...

    def is_configured(self) -> bool: ...

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ProviderReply: ...


class BaseProvider(abc.ABC):
    """Shared adapter plumbing: credentials, lazy client, cancellation, error mapping."""

    provider_name: str = "provider"
    default_api_key_env: str | None = None

    def __init__(
        self,
        *,
        model: str | None = None,
        api_key: str | None = None,
        api_key_env: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        client: object | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.model = _validate_non_empty_str(
            model or default_model_for(self.name) or "", "model"
        )
        self._api_key = _validate_optional_str(api_key, "api_key")
        self._api_key_env = _validate_optional_str(api_key_env, "api_key_env")
        self._base_url = _validate_optional_str(base_url, "base_url")
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._timeout_seconds = timeout_seconds
        self._client = client
        self._environ = environ

    @property
    def name(self) -> str:
        return self.provider_name

    def is_configured(self) -> bool:
        """True when a client was injected or an API key is available."""
        return self._client is not None or self._lookup_api_key() is not None

    def resolve_model(self, requested: str | None) -> str:
        return resolve_model(self.provider_name, requested, default=self.model)

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ProviderReply:
        if not messages:
            raise ValueError("messages cannot be empty")
        model = self.resolve_model(options.model)
        client = self._ensure_client()
        try:
            raw = await race_cancellation(
                self._create(client, messages=messages, options=options, model=model),
                cancel_token,
            )
        except ProviderError:
            raise
        except Exception as exc:
            raise self._map_exception(exc) from exc
        return self._normalize_reply(raw, requested_model=model)

    @abc.abstractmethod
    def _create_default_client(self, api_key: str) -> object:
        """Import the SDK lazily and build an async client."""

    @abc.abstractmethod
    async def _create(
        self,
        client: object,
        *,
        messages: Sequence[ChatMessage],
        options: ChatOptions,
        model: str,
    ) -> object:
        """Issue one SDK request and return the raw response."""

    @abc.abstractmethod
    def _normalize_reply(self, raw: object, *, requested_model: str) -> ProviderReply:
        """Convert an SDK response into a ``ProviderReply``."""

    def _ensure_client(self) -> object:
        if self._client is not None:
            return self._client
        api_key = self._lookup_api_key()
        if api_key is None:
            env_name = self._api_key_env or self.default_api_key_env or "<unset>"
            raise ProviderUnconfiguredError(
                f"missing API key; set {env_name}", provider=self.provider_name
            )
        self._client = self._create_default_client(api_key)
        return self._client

    def _lookup_api_key(self) -> str | None:
        if self._api_key is not None:
            return self._api_key
        env_name = self._api_key_env or self.default_api_key_env
        if env_name is None:
            return None
        environ = os.environ if self._environ is None else self._environ
        value = environ.get(env_name)
        if value is None or not value.strip():
            return None
        return value.strip()

    def _client_kwargs(self, api_key: str) -> dict[str, object]:
        init_kwargs: dict[str, object] = {"api_key": api_key}
        if self._base_url is not None:
            init_kwargs["base_url"] = self._base_url
        if self._timeout_seconds is not None:
            init_kwargs["timeout"] = self._timeout_seconds
        return init_kwargs

    def _map_exception(self, exc: Exception) -> ProviderError:
        status_code = read_status_code(exc)
        class_name = exc.__class__.__name__.lower()
        detail = exception_detail(exc)

        kind = classify_failure(status_code, detail)
        if kind is FailureKind.OTHER and "ratelimit" in class_name:
            kind = FailureKind.RATE_LIMITED
        return error_for_kind(
            kind, provider=self.provider_name, detail=detail, http_status=status_code
        )


def exception_detail(exc: BaseException) -> str:
    body = getattr(exc, "body", None)
    if isinstance(body, Mapping):
        error = body.get("error")
        message = error.get("message") if isinstance(error, Mapping) else body.get("message")
        if isinstance(message, str) and message.strip():
            return " ".join(message.split())
    text = str(exc).strip()
    if text:
        return " ".join(text.split())
    return exc.__class__.__name__


def read_status_code(exc: BaseException) -> int | None:
    for key in ("status_code", "status", "http_status", "code"):
        value = getattr(exc, key, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(exc, "response", None)
    if response is not None:
        nested = getattr(response, "status_code", None)
        if isinstance(nested, int):
            return nested
    return None


def read_value(value: object, key: str, *, default: object | None = None) -> object | None:
    if isinstance(value, Mapping):
        return cast("object | None", value.get(key, default))
    return cast("object | None", getattr(value, key, default))


def read_sequence(value: object, key: str) -> tuple[object, ...]:
    candidate = read_value(value, key)
    if isinstance(candidate, Sequence) and not isinstance(candidate, (str, bytes, bytearray)):
        return tuple(candidate)
    return ()


def read_str(value: object, key: str) -> str | None:
    candidate = read_value(value, key)
    if isinstance(candidate, str) and candidate.strip():
        return candidate
    return None


def read_int(value: object, key: str) -> int | None:
    candidate = read_value(value, key)
    if isinstance(candidate, int) and not isinstance(candidate, bool):
        return candidate
    return None


def _normalize_detail(value: object) -> str:
    text = str(value).strip()
    if not text:
        return "unknown error"
    return " ".join(text.split())


__all__ = [
    "BaseProvider",
    "CHAT_ROLES",
    "ChatMessage",
    "ChatOptions",
    "FailureKind",
    "JSONValue",
    "ProviderError",
    "ProviderProtocol",
    "ProviderQuotaError",
    "ProviderRateLimitError",
    "ProviderReply",
    "ProviderServiceError",
    "ProviderUnconfiguredError",
    "classify_failure",
    "error_for_kind",
    "exception_detail",
    "read_int",
    "read_sequence",
    "read_status_code",
    "read_str",
    "read_value",
]
