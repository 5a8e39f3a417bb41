"""
subagent-runtime — provider failover router

File: src/subagent_runtime/router.py
Last updated: 2026-10-18

Purpose
- Send one chat request across an ordered list of providers and recover from
  quota, billing and rate-limit failures by moving on to the next provider.

What is included in this file
- ``FailoverState``: the router-owned active-provider marker and notification
  cooldown, updated with a locked compare-and-swap.
- ``ProviderRouter``: priority-ordered dispatch, failover notification,
  per-provider stats and a status snapshot.

Functional requirements
- Unconfigured providers are skipped without counting as failures.
- Concurrent requests that fail over together produce one notification.
- Notifier failures never propagate into ``chat``.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from subagent_runtime.config.settings import RouterConfig
from subagent_runtime.errors import AllProvidersFailedError
from subagent_runtime.observability.logging import correlation_scope
from subagent_runtime.observability.metrics import MetricsRegistry
from subagent_runtime.providers.base import (
    ChatMessage,
    ChatOptions,
    ProviderError,
    ProviderProtocol,
    ProviderReply,
    ProviderUnconfiguredError,
)
from subagent_runtime.utils.concurrency import CancellationToken

Clock = Callable[[], float]
Notifier = Callable[[str], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class FailoverDecision:
    previous: str | None
    current: str
    switched: bool
    notify: bool

    @property
    def message(self) -> str:
        return f"Provider failover: {self.previous} -> {self.current}"


class FailoverState:
    """Active provider marker plus the timestamp of the last failover notification."""

    def __init__(self, *, primary: str | None) -> None:
        self.primary = primary
        self.active_provider: str | None = None
        self.last_notified_at: float | None = None
        self.failovers = 0
        self._lock = asyncio.Lock()

    async def record_success(
        self, provider: str, now: float, cooldown: float, *, baseline: str | None = None
    ) -> FailoverDecision:
        """Mark ``provider`` active and decide whether a notification is due.

        ``baseline`` is the first provider actually called for this request
        (unconfigured providers never count); it defaults to ``primary``. The
        first success on the baseline only sets the marker. Any other change of
        the active provider is a failover; it notifies unless a notification was
        sent less than ``cooldown`` seconds ago.
        """
        expected = baseline if baseline is not None else self.primary
        async with self._lock:
            previous = self.active_provider
            if previous == provider:
                return FailoverDecision(
                    previous=previous, current=provider, switched=False, notify=False
                )

            self.active_provider = provider
            if previous is None:
                if provider == expected:
                    return FailoverDecision(
                        previous=None, current=provider, switched=False, notify=False
                    )
                previous = expected

            self.failovers += 1
            notify = self.last_notified_at is None or now - self.last_notified_at >= cooldown
            if notify:
                self.last_notified_at = now
            return FailoverDecision(
                previous=previous, current=provider, switched=True, notify=notify
            )


@dataclass(slots=True)
class ProviderStats:
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "attempts": self.attempts,
            "successes": self.successes,
            "failures": self.failures,
            "skipped": self.skipped,
        }


class ProviderRouter:
    """Priority-ordered chat dispatch with transparent provider failover."""

    def __init__(
        self,
        providers: Sequence[ProviderProtocol],
        config: RouterConfig | None = None,
        *,
        notifier: Notifier | None = None,
        clock: Clock = time.monotonic,
        logger: Any | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        names = [provider.name for provider in providers]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate provider name(s): {', '.join(duplicates)}")

        self._providers = tuple(providers)
        self._config = config if config is not None else RouterConfig()
        self._notifier = notifier
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._metrics = metrics if metrics is not None else MetricsRegistry()
        self._state = FailoverState(primary=names[0] if names else None)
        self._stats = {name: ProviderStats() for name in names}
        self._total_requests = 0
        self._successful_requests = 0

    @property
    def provider_order(self) -> tuple[str, ...]:
        return tuple(provider.name for provider in self._providers)

    @property
    def active_provider(self) -> str | None:
        return self._state.active_provider

    @property
    def failover_state(self) -> FailoverState:
        return self._state

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        """Return the completion text of the first provider that answers."""
        reply = await self.complete(messages, options, cancel_token=cancel_token)
        return reply.text

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ProviderReply:
        """Like ``chat`` but return the full reply (answering provider and usage)."""
        request_options = options if options is not None else ChatOptions()
        self._total_requests += 1
        self._metrics.inc("router_requests_total")

        last_error: BaseException | None = None
        attempted: list[str] = []

        for provider in self._providers:
            name = provider.name
            stats = self._stats[name]
            if not provider.is_configured():
                stats.skipped += 1
                continue
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            attempted.append(name)
            stats.attempts += 1
            try:
                with correlation_scope(provider=name):
                    reply = await provider.complete(
                        messages, request_options, cancel_token=cancel_token
                    )
            except ProviderUnconfiguredError as exc:
                attempted.pop()
                stats.skipped += 1
                self._logger.info("provider_unconfigured", provider=name, detail=exc.detail)
                continue
            except ProviderError as exc:
                stats.failures += 1
                last_error = exc
                self._metrics.inc(
                    "router_provider_failures_total",
                    labels={"provider": name, "kind": exc.kind.value},
                )
                if exc.skippable:
                    self._logger.info(
                        "provider_unavailable",
                        provider=name,
                        kind=exc.kind.value,
                        detail=exc.detail,
                    )
                else:
                    self._logger.warning(
                        "provider_request_failed",
                        provider=name,
                        kind=exc.kind.value,
                        http_status=exc.http_status,
                        detail=exc.detail,
                    )
                continue
            except Exception as exc:  # noqa: BLE001
                stats.failures += 1
                last_error = exc
                self._metrics.inc(
                    "router_provider_failures_total", labels={"provider": name, "kind": "other"}
                )
                self._logger.warning(
                    "provider_request_failed",
                    provider=name,
                    kind="other",
                    error_type=exc.__class__.__name__,
                    detail=str(exc),
                )
                continue

            stats.successes += 1
            self._successful_requests += 1
            await self._record_success(name, baseline=attempted[0])
            return reply

        self._metrics.inc("router_exhausted_total")
        error = AllProvidersFailedError(last_error=last_error, attempted=attempted)
        self._logger.error("all_providers_failed", attempted=attempted, error=str(error))
        raise error from last_error

    def status(self) -> dict[str, Any]:
        """Snapshot of the active provider, configuration and request totals."""
        return {
            "active_provider": self._state.active_provider,
            "provider_order": list(self.provider_order),
            "providers": {
                provider.name: {
                    "configured": provider.is_configured(),
                    "stats": self._stats[provider.name].to_dict(),
                }
                for provider in self._providers
            },
            "totals": {
                "requests": self._total_requests,
                "successful_requests": self._successful_requests,
                "failovers": self._state.failovers,
            },
        }

    async def _record_success(self, provider: str, *, baseline: str) -> None:
        decision = await self._state.record_success(
            provider, self._clock(), self._config.failover_cooldown_seconds, baseline=baseline
        )
        if not decision.switched:
            return

        self._metrics.inc("router_failovers_total")
        self._logger.warning(
            "provider_failover",
            previous=decision.previous,
            current=decision.current,
            notified=decision.notify,
        )
        if decision.notify:
            await self._notify(decision.message)

    async def _notify(self, message: str) -> None:
        if self._notifier is None:
            return
        try:
            outcome = self._notifier(message)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "failover_notification_failed",
                error_type=exc.__class__.__name__,
                error=str(exc),
            )


__all__ = [
    "FailoverDecision",
    "FailoverState",
    "Notifier",
    "ProviderRouter",
    "ProviderStats",
]
