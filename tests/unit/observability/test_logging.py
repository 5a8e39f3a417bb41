"""
subagent-runtime — unit tests for observability logging

File: tests/unit/observability/test_logging.py
Last updated: 2026-10-18

Purpose
- Validate structured JSON logging with redaction, correlation metadata and
  queue-backed reliability.

What this test file covers
- JSON line validity and redaction guarantees.
- Correlation field propagation, including across asyncio tasks.
- structlog events routed into the JSON sink.
- Queue drain/shutdown behavior.
"""

from __future__ import annotations

import asyncio
import json
import logging
import logging.handlers
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from subagent_runtime.observability.logging import (
    LoggingConfig,
    correlation_scope,
    flush_logging,
    get_active_logging_handle,
    get_correlation_context,
    redact_text,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _logger_name() -> str:
    return f"subagent_runtime.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_json_logging_redacts_secrets_and_preserves_correlation_fields(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="session-redaction",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stdout=False,
        )
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(run_id="run-01ARZ3NDEKTSV4RRFFQ69G5FAV", provider="anthropic"):
        logger.info(
            "payload token=tok-FAKE and key sk-ant-REDACTED",
            extra={"nested": {"password": "hunter2", "safe": "ok"}, "input_tokens": 12},
        )

    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "session-redaction" / "subagent.jsonl"
    parsed = _read_json_lines(handle.log_path)
    assert len(parsed) == 1
    first = parsed[0]
    assert first["session_id"] == "session-redaction"
    assert first["run_id"] == "run-01ARZ3NDEKTSV4RRFFQ69G5FAV"
    assert first["provider"] == "anthropic"
    assert first["fields"] == {
        "nested": {"password": "***REDACTED***", "safe": "ok"},
        "input_tokens": 12,
    }

    line = handle.log_path.read_text(encoding="utf-8")
    assert "tok-FAKE" not in line
    assert "sk-ant-FAKE" not in line
    assert "hunter2" not in line


def test_setup_logging_routes_structlog_events_to_json_sink(tmp_path: Path) -> None:
    handle = setup_logging(
        {
            "log_level": "INFO",
            "log_dir": str(tmp_path),
            "redact_secrets": True,
            "log_to_stdout": False,
        },
        session_id="session-structlog",
    )

    log = structlog.get_logger("subagent_runtime.pool")
    with correlation_scope(run_id="run-01ARZ3NDEKTSV4RRFFQ69G5FAV"):
        log.info("subagent_spawned", label="Inbox", api_key="gsk_FAKE1234567890abcd")
    log.debug("hidden_below_level")
    shutdown_logging(handle)

    parsed = _read_json_lines(handle.log_path)
    assert [entry["event"] for entry in parsed] == ["subagent_spawned"]
    entry = parsed[0]
    assert entry["logger"] == "subagent_runtime.pool"
    assert entry["run_id"] == "run-01ARZ3NDEKTSV4RRFFQ69G5FAV"
    assert entry["label"] == "Inbox"
    assert "gsk_FAKE" not in handle.log_path.read_text(encoding="utf-8")


def test_setup_logging_can_disable_redaction(tmp_path: Path) -> None:
    handle = setup_logging(
        {"log_dir": str(tmp_path), "redact_secrets": False, "log_to_stdout": False},
        session_id="session-plain",
    )
    logging.getLogger("subagent_runtime").warning("token=visible")
    shutdown_logging(handle)

    assert "token=visible" in handle.log_path.read_text(encoding="utf-8")


async def test_correlation_scope_is_isolated_per_task() -> None:
    seen: dict[str, dict[str, str]] = {}

    async def worker(run_id: str) -> None:
        with correlation_scope(run_id=run_id):
            await asyncio.sleep(0)
            seen[run_id] = get_correlation_context()

    await asyncio.gather(worker("run-a"), worker("run-b"))

    assert seen["run-a"] == {"run_id": "run-a"}
    assert seen["run-b"] == {"run_id": "run-b"}
    assert get_correlation_context() == {}


def test_multithreaded_logging_produces_valid_json_lines(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="session-threaded",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stdout=False,
            queue_size=4096,
        )
    )
    logger = logging.getLogger(logger_name)

    total_threads = 8
    per_thread = 40

    def worker(thread_idx: int) -> None:
        for i in range(per_thread):
            logger.info(
                f"thread={thread_idx} index={i} Bearer abc.def-{thread_idx}-{i}",
                extra={"api_key": f"sk-FAKE{thread_idx}x{i}abcdefghijkl"},
            )

    threads = [threading.Thread(target=worker, args=(idx,)) for idx in range(total_threads)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    shutdown_logging(handle)

    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == total_threads * per_thread
    for line in lines:
        parsed = json.loads(line)
        assert isinstance(parsed, dict)
        assert "event" in parsed
        assert "abc.def" not in line
        assert "sk-FAKE" not in line


def test_queue_handler_non_blocking_and_shutdown_flushes(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="session-flush",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stdout=False,
            queue_size=10_000,
        )
    )
    logger = logging.getLogger(logger_name)

    queue_handlers = [h for h in logger.handlers if isinstance(h, logging.handlers.QueueHandler)]
    assert queue_handlers, "expected queue-backed non-blocking logging"

    expected = 300
    for i in range(expected):
        logger.info("message %s", i)

    shutdown_logging(handle)

    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert handle.dropped_records == 0
    assert len(lines) == expected
    assert handle.is_shutdown


@pytest.mark.parametrize(
    ("text", "leaked"),
    [
        ("header Bearer abc123.def", "abc123"),
        ("ANTHROPIC key sk-ant-REDACTED", "ABCDEFGHIJKLMNOP"),
        ("openai sk-ABCDEFGHIJKLMNOP1234", "ABCDEFGHIJKLMNOP1234"),
        ("groq gsk_ABCDEFGHIJKLMNOP1234", "ABCDEFGHIJKLMNOP1234"),
        ("password=hunter2", "hunter2"),
    ],
)
def test_redact_text_masks_credentials(text: str, leaked: str) -> None:
    assert leaked not in redact_text(text)


def test_invalid_logging_config_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="log_filename"):
        setup_structured_logging(
            LoggingConfig(session_id="s", base_log_dir=tmp_path, log_filename="../escape.jsonl")
        )


def test_new_session_replaces_active_handle(tmp_path: Path) -> None:
    logger_name = _logger_name()
    first = setup_structured_logging(
        LoggingConfig(
            session_id="session-first",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stdout=False,
        )
    )
    assert get_active_logging_handle() is first

    second = setup_structured_logging(
        LoggingConfig(
            session_id="session-second",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stdout=False,
        )
    )
    assert first.is_shutdown
    assert get_active_logging_handle() is second

    logging.getLogger(logger_name).info("after replacement")
    flush_logging()
    assert _read_json_lines(second.log_path)[0]["event"] == "after replacement"

    shutdown_logging()
    assert second.is_shutdown
    assert get_active_logging_handle() is None
