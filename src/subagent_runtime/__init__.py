"""
subagent-runtime — package root

File: src/subagent_runtime/__init__.py
Last updated: 2026-10-18

Purpose
- Bounded-concurrency sub-agent task pool on top of a provider-failover chat router.
"""

from subagent_runtime.announce import AnnounceDispatcher, format_announcement
from subagent_runtime.config.settings import PoolConfig, RouterConfig
from subagent_runtime.domain.models import (
    CleanupPolicy,
    PoolStatus,
    Run,
    RunState,
    RunStats,
    SpawnReceipt,
    SpawnRequest,
)
from subagent_runtime.errors import (
    AllProvidersFailedError,
    InvalidTransitionError,
    QueueFullError,
    RunNotFoundError,
    RunTimeoutError,
    SubagentRuntimeError,
)
from subagent_runtime.pool import TaskPool
from subagent_runtime.registry import RunListing, RunRegistry
from subagent_runtime.router import ProviderRouter
from subagent_runtime.runtime import SubagentRuntime, build_runtime, load_runtime

__version__ = "0.1.0"

__all__ = [
    "AllProvidersFailedError",
    "AnnounceDispatcher",
    "CleanupPolicy",
    "InvalidTransitionError",
    "PoolConfig",
    "PoolStatus",
    "ProviderRouter",
    "QueueFullError",
    "RouterConfig",
    "Run",
    "RunListing",
    "RunNotFoundError",
    "RunRegistry",
    "RunState",
    "RunStats",
    "RunTimeoutError",
    "SpawnReceipt",
    "SpawnRequest",
    "SubagentRuntime",
    "SubagentRuntimeError",
    "TaskPool",
    "__version__",
    "build_runtime",
    "format_announcement",
    "load_runtime",
]
