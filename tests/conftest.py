"""Shared pytest fixtures."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import structlog

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    # Loggers cached by ``configure_structlog`` would otherwise bypass ``capture_logs``.
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()
