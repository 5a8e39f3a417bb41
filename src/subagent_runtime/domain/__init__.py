"""
subagent-runtime — domain types

File: src/subagent_runtime/domain/__init__.py
Last updated: 2026-10-18

Purpose
- Run lifecycle types shared by the pool, registry and announce dispatcher.

What is included in this file
- Re-export of run models, lifecycle enums and run id helpers.
- The domain layer is free of IO side effects and event-loop dependencies.
"""

from subagent_runtime.domain.ids import generate_run_id, session_tag, validate_run_id
from subagent_runtime.domain.models import (
    CleanupPolicy,
    PoolStatus,
    Run,
    RunState,
    RunStats,
    SpawnReceipt,
    SpawnRequest,
    TokenUsage,
    utc_now,
)

__all__ = [
    "CleanupPolicy",
    "PoolStatus",
    "Run",
    "RunState",
    "RunStats",
    "SpawnReceipt",
    "SpawnRequest",
    "TokenUsage",
    "generate_run_id",
    "session_tag",
    "utc_now",
    "validate_run_id",
]
