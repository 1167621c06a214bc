"""Tests for lifecycle events, the event bus and action labels."""

from __future__ import annotations

import pytest

from kestrel.events import types as ev
from kestrel.events.bus import EventBus
from kestrel.events.describe import describe_action
from kestrel.events.types import ExecutorEvent, compact_preview


class TestExecutorEvent:
    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError, match="Unknown event kind"):
            ExecutorEvent(kind="bogus", message="x")

    def test_detail_is_compacted(self):
        event = ExecutorEvent(kind=ev.THINKING, message="Thinking", detail="a\n\n  b" + "c" * 600)
        assert "\n" not in event.detail
        assert len(event.detail) <= ev.DETAIL_PREVIEW_CHARS
        assert event.detail.endswith("…")

    def test_timestamp_filled(self):
        assert ExecutorEvent(kind=ev.START, message="go").timestamp

    def test_compact_preview_short_text_unchanged(self):
        assert compact_preview("  hello   world ") == "hello world"


class TestEventBus:
    def test_kind_and_global_handlers(self):
        bus = EventBus()
        seen_all: list[str] = []
        seen_done: list[str] = []
        bus.subscribe_all(lambda e: seen_all.append(e.kind))
        bus.subscribe(ev.DONE, lambda e: seen_done.append(e.kind))

        bus.emit(ExecutorEvent(kind=ev.START, message="s"))
        bus.emit(ExecutorEvent(kind=ev.DONE, message="d"))

        assert seen_all == [ev.START, ev.DONE]
        assert seen_done == [ev.DONE]

    def test_failing_handler_does_not_stop_others(self):
        bus = EventBus()
        seen: list[str] = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe_all(broken)
        bus.subscribe_all(lambda e: seen.append(e.kind))
        bus.emit(ExecutorEvent(kind=ev.START, message="s"))
        assert seen == [ev.START]

    def test_unsubscribe_missing_handler_is_noop(self):
        bus = EventBus()
        bus.unsubscribe(ev.DONE, lambda e: None)

    def test_history_is_bounded(self):
        bus = EventBus(max_history=3)
        for _ in range(5):
            bus.emit(ExecutorEvent(kind=ev.THINKING, message="t"))
        assert len(bus.recent_events()) == 3

    @pytest.mark.asyncio
    async def test_async_handler_runs_on_loop(self):
        bus = EventBus()
        seen: list[str] = []

        async def handler(event):
            seen.append(event.kind)

        bus.subscribe_all(handler)
        bus.emit(ExecutorEvent(kind=ev.RESUME, message="r"))
        await bus.drain(timeout=1.0)
        assert seen == [ev.RESUME]


class TestDescribeAction:
    def test_read_file_with_range(self):
        message, detail = describe_action(
            "read-file", {"path": "src/app.py", "startLine": 10}, "start",
        )
        assert message == "Reading file"
        assert detail == "src/app.py (10-end)"

    def test_result_phase_label(self):
        message, detail = describe_action("exec-command", {"command": "ls"}, "result")
        assert message == "Command output"
        assert detail == "ls"

    def test_unknown_capability_uses_json_detail(self):
        message, detail = describe_action("custom-thing", {"a": 1}, "start")
        assert message == "Using custom-thing"
        assert detail == '{"a": 1}'
