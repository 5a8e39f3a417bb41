"""
subagent-runtime — unit tests for run announcements

File: tests/unit/test_announce.py
Last updated: 2026-10-18

Purpose
- Verify announcement formatting per terminal state and the delivery rules of
  ``AnnounceDispatcher`` (skip sentinel, refused states, sink failures).
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from structlog.testing import capture_logs

from subagent_runtime.announce import AnnounceDispatcher, format_announcement
from subagent_runtime.domain.models import Run, TokenUsage

_RUN_ID = "run-01ARZ3NDEKTSV4RRFFQ69G5FAV"
_T0 = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)


def _run(**overrides: object) -> Run:
    fields: dict[str, object] = {
        "run_id": _RUN_ID,
        "instructions": "Summarize unread email",
        "label": "Inbox digest",
        "model": "claude-3-haiku-20240307",
        "timeout_seconds": 60,
    }
    fields.update(overrides)
    return Run(**fields)  # type: ignore[arg-type]


def _completed(result: str, *, usage: TokenUsage | None = None, seconds: float = 12.4) -> Run:
    run = _run()
    run.mark_running(_T0)
    run.mark_completed(
        result, _T0 + timedelta(seconds=seconds), provider="anthropic", usage=usage
    )
    return run


def test_format_completed_with_tokens() -> None:
    run = _completed(
        "3 unread, nothing urgent.", usage=TokenUsage(input_tokens=812, output_tokens=64)
    )

    assert format_announcement(run) == (
        "[Sub-Agent: Inbox digest]\n\n"
        "✅ Status: success\n\n"
        "Result:\n3 unread, nothing urgent.\n\n"
        "---\n"
        "Runtime: 12s | Tokens: 812 in / 64 out\n"
        "Session: 01ARZ3ND"
    )


def test_format_failed_without_known_tokens() -> None:
    run = _run()
    run.mark_running(_T0)
    run.mark_failed("All providers failed. Last error: quota", _T0 + timedelta(seconds=2.6))

    assert format_announcement(run) == (
        "[Sub-Agent: Inbox digest]\n\n"
        "❌ Status: error\n\n"
        "Error: All providers failed. Last error: quota\n\n"
        "---\n"
        "Runtime: 3s\n"
        "Session: 01ARZ3ND"
    )


def test_format_timed_out() -> None:
    run = _run()
    run.mark_running(_T0)
    run.mark_timed_out("run timed out after 60 seconds", _T0 + timedelta(seconds=60))

    message = format_announcement(run)

    assert "⏰ Status: timeout" in message
    assert "Error: run timed out after 60 seconds" in message
    assert "Runtime: 60s" in message


def test_format_refuses_cancelled_runs() -> None:
    run = _run()
    run.mark_cancelled(_T0)

    with pytest.raises(ValueError, match="cannot be announced"):
        format_announcement(run)


async def test_announce_delivers_to_async_sink() -> None:
    delivered: list[str] = []

    async def sink(message: str) -> None:
        delivered.append(message)

    dispatcher = AnnounceDispatcher(sink)

    assert await dispatcher.announce(_completed("done")) is True
    assert delivered[0].startswith("[Sub-Agent: Inbox digest]")
    assert dispatcher.delivered == 1


async def test_announce_accepts_sync_sink() -> None:
    delivered: list[str] = []
    dispatcher = AnnounceDispatcher(delivered.append)

    assert await dispatcher.announce(_completed("done")) is True
    assert len(delivered) == 1


@pytest.mark.parametrize("result", ["ANNOUNCE_SKIP", "  ANNOUNCE_SKIP\n"])
async def test_announce_skip_sentinel_suppresses_delivery(result: str) -> None:
    delivered: list[str] = []
    dispatcher = AnnounceDispatcher(delivered.append)

    with capture_logs() as logs:
        assert await dispatcher.announce(_completed(result)) is False

    assert delivered == []
    assert [entry["event"] for entry in logs] == ["announce_skipped"]


async def test_announce_refuses_active_and_cancelled_runs() -> None:
    delivered: list[str] = []
    dispatcher = AnnounceDispatcher(delivered.append)
    running = _run()
    running.mark_running(_T0)
    cancelled = _run(run_id="run-01BX5ZZKBKACTAV9WEVGEMMVRZ")
    cancelled.mark_cancelled(_T0)

    assert await dispatcher.announce(_run()) is False
    assert await dispatcher.announce(running) is False
    assert await dispatcher.announce(cancelled) is False
    assert delivered == []


async def test_sink_failure_is_logged_and_not_retried() -> None:
    attempts: list[str] = []

    async def sink(message: str) -> None:
        attempts.append(message)
        raise ConnectionError("channel unavailable")

    dispatcher = AnnounceDispatcher(sink)

    with capture_logs() as logs:
        assert await dispatcher.announce(_completed("done")) is False

    assert len(attempts) == 1
    assert dispatcher.failed == 1
    failure = next(entry for entry in logs if entry["event"] == "announce_delivery_failed")
    assert failure["error_type"] == "ConnectionError"
    assert failure["log_level"] == "warning"


async def test_missing_sink_only_logs_message() -> None:
    dispatcher = AnnounceDispatcher()

    with capture_logs() as logs:
        assert await dispatcher.announce(_completed("done")) is False

    assert logs[0]["event"] == "announce_without_sink"
    assert "Result:\ndone" in logs[0]["message"]
