"""
subagent-runtime — runtime wiring

File: src/subagent_runtime/runtime.py
Last updated: 2026-10-18

Purpose
- Build provider adapters, the failover router, the announce dispatcher and the
  task pool from one validated config mapping.

What is included in this file
- ``build_provider``: adapter factory keyed by provider name.
- ``build_runtime`` / ``load_runtime``: assemble a ``SubagentRuntime`` and, when
  asked, start session logging from the ``[observability]`` section.
- ``SubagentRuntime.shutdown``: stop the pool, then flush and close session logs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from subagent_runtime.announce import AnnounceDispatcher, AnnounceSink
from subagent_runtime.config.loader import load_config
from subagent_runtime.config.schema import default_config
from subagent_runtime.config.settings import (
    ProviderSettings,
    RuntimeSettings,
    runtime_settings_from,
)
from subagent_runtime.domain.ids import generate_ulid
from subagent_runtime.domain.models import SpawnReceipt, SpawnRequest
from subagent_runtime.observability.logging import (
    StructuredLoggingHandle,
    setup_logging,
    shutdown_logging,
)
from subagent_runtime.observability.metrics import MetricsRegistry
from subagent_runtime.pool import CompletionHook, TaskPool
from subagent_runtime.providers.anthropic_adapter import AnthropicProvider
from subagent_runtime.providers.base import BaseProvider, ProviderProtocol
from subagent_runtime.providers.gemini_adapter import GeminiProvider
from subagent_runtime.providers.openai_adapter import OpenAICompatibleProvider
from subagent_runtime.router import Notifier, ProviderRouter


@dataclass(slots=True)
class SubagentRuntime:
    settings: RuntimeSettings
    router: ProviderRouter
    dispatcher: AnnounceDispatcher
    pool: TaskPool
    metrics: MetricsRegistry
    logging_handle: StructuredLoggingHandle | None = None

    def spawn(self, request: SpawnRequest | str, /, **fields: Any) -> SpawnReceipt:
        return self.pool.spawn(request, **fields)

    def status(self) -> dict[str, Any]:
        return {
            "pool": self.pool.get_status().to_dict(),
            "router": self.router.status(),
            "metrics": self.metrics.snapshot(),
        }

    async def shutdown(self) -> None:
        try:
            await self.pool.shutdown()
        finally:
            if self.logging_handle is not None:
                shutdown_logging(self.logging_handle)


def build_provider(
    settings: ProviderSettings, *, environ: Mapping[str, str] | None = None
) -> BaseProvider:
    """Instantiate the adapter for ``settings.name``. The SDK is imported on first call."""
    if settings.name == "anthropic":
        return AnthropicProvider(
            model=settings.model,
            api_key_env=settings.api_key_env,
            base_url=settings.base_url,
            timeout_seconds=settings.timeout_seconds,
            environ=environ,
        )
    if settings.name in ("openai", "groq"):
        return OpenAICompatibleProvider(
            name=settings.name,
            model=settings.model,
            api_key_env=settings.api_key_env,
            base_url=settings.base_url,
            timeout_seconds=settings.timeout_seconds,
            environ=environ,
        )
    if settings.name == "google":
        return GeminiProvider(
            model=settings.model,
            api_key_env=settings.api_key_env,
            base_url=settings.base_url,
            timeout_seconds=settings.timeout_seconds,
            environ=environ,
        )
    raise ValueError(f"unknown provider: {settings.name!r}")


def build_runtime(
    config: Mapping[str, object] | None = None,
    *,
    sink: AnnounceSink | None = None,
    notifier: Notifier | None = None,
    on_complete: CompletionHook | None = None,
    providers: Sequence[ProviderProtocol] | None = None,
    environ: Mapping[str, str] | None = None,
    metrics: MetricsRegistry | None = None,
    configure_logging: bool = False,
    session_id: str | None = None,
) -> SubagentRuntime:
    """Assemble a runtime. ``providers`` overrides the adapters built from config.

    With ``configure_logging`` the ``[observability]`` section drives session
    logging under ``<log_dir>/<session_id>/``; ``session_id`` defaults to a
    fresh ULID. Embedders that own logging leave it off.
    """
    settings = runtime_settings_from(config if config is not None else default_config())
    registry = metrics if metrics is not None else MetricsRegistry()

    logging_handle: StructuredLoggingHandle | None = None
    if configure_logging:
        logging_handle = setup_logging(
            settings.observability, session_id=session_id or generate_ulid()
        )
    log = structlog.get_logger(__name__)

    if providers is None:
        providers = tuple(
            build_provider(settings.providers[name], environ=environ)
            for name in settings.provider_order
        )

    router = ProviderRouter(providers, settings.router, notifier=notifier, metrics=registry)
    dispatcher = AnnounceDispatcher(sink)
    pool = TaskPool(
        router,
        settings.pool,
        dispatcher=dispatcher,
        metrics=registry,
        on_complete=on_complete,
    )
    log.info(
        "subagent_runtime_ready",
        provider_order=list(router.provider_order),
        configured=[provider.name for provider in providers if provider.is_configured()],
        max_concurrency=settings.pool.max_concurrency,
    )
    return SubagentRuntime(
        settings=settings,
        router=router,
        dispatcher=dispatcher,
        pool=pool,
        metrics=registry,
        logging_handle=logging_handle,
    )


def load_runtime(
    config_path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
    configure_logging: bool = True,
    **kwargs: Any,
) -> SubagentRuntime:
    """``load_config`` followed by ``build_runtime`` with the same environment.

    Session logging is on by default here since the config file owns it.
    """
    config = load_config(config_path, environ=environ, overrides=overrides)
    return build_runtime(
        config, environ=environ, configure_logging=configure_logging, **kwargs
    )


__all__ = ["SubagentRuntime", "build_provider", "build_runtime", "load_runtime"]
