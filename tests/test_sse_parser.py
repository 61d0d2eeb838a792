"""Tests for the SSE line parser."""

from __future__ import annotations

from typing import Any

import pytest

from llm_relay.streaming.sse import CONTINUE, STOP, SSEParser, StreamAction


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _lines(*lines: str):
    for line in lines:
        yield line


class RecordingHandler:
    """Handler that records every callback and returns scripted actions."""

    def __init__(self, actions: dict[str, StreamAction] | None = None) -> None:
        self.events: list[tuple[str | None, dict[str, Any]]] = []
        self.parse_errors: list[str] = []
        self.ended = 0
        self._actions = actions or {}

    def on_event(self, event_type: str | None, data: dict[str, Any]) -> StreamAction:
        self.events.append((event_type, data))
        return self._actions.get(event_type or "", CONTINUE)

    def on_stream_end(self) -> None:
        self.ended += 1

    def on_parse_error(self, line: str, error: Exception) -> None:
        self.parse_errors.append(line)


# ---------------------------------------------------------------------------
# Data-only streams
# ---------------------------------------------------------------------------

class TestDataOnly:
    @pytest.mark.asyncio
    async def test_type_field_dispatch(self):
        handler = RecordingHandler()
        result = await SSEParser().parse(
            _lines('data: {"type": "a", "v": 1}', "", 'data: {"type": "b"}'), handler
        )
        assert result.ok
        assert [e[0] for e in handler.events] == ["a", "b"]
        assert handler.events[0][1]["v"] == 1
        assert handler.ended == 1

    @pytest.mark.asyncio
    async def test_done_marker_ends_without_event(self):
        handler = RecordingHandler()
        result = await SSEParser().parse(
            _lines('data: {"type": "a"}', "data: [DONE]", 'data: {"type": "late"}'), handler
        )
        assert result.ok
        assert [e[0] for e in handler.events] == ["a"]
        assert handler.ended == 1

    @pytest.mark.asyncio
    async def test_bare_done_marker(self):
        handler = RecordingHandler()
        await SSEParser().parse(_lines("[DONE]", 'data: {"type": "late"}'), handler)
        assert handler.events == []
        assert handler.ended == 1

    @pytest.mark.asyncio
    async def test_blank_and_empty_object_payloads_skipped(self):
        handler = RecordingHandler()
        await SSEParser().parse(_lines("data:", "data: {}", "   ", 'data: {"type": "x"}'), handler)
        assert [e[0] for e in handler.events] == ["x"]
        assert handler.parse_errors == []

    @pytest.mark.asyncio
    async def test_keepalive_comments_skipped(self):
        handler = RecordingHandler()
        parser = SSEParser(type_field=None, skip_keepalives=True)
        await parser.parse(_lines(": OPENROUTER PROCESSING", 'data: {"k": 1}'), handler)
        assert handler.events == [(None, {"k": 1})]
        assert handler.parse_errors == []

    @pytest.mark.asyncio
    async def test_structure_based_streams_have_no_type(self):
        handler = RecordingHandler()
        await SSEParser(type_field=None).parse(_lines('data: {"type": "ignored"}'), handler)
        assert handler.events == [(None, {"type": "ignored"})]


# ---------------------------------------------------------------------------
# Resilience
# ---------------------------------------------------------------------------

class TestMalformedChunks:
    @pytest.mark.asyncio
    async def test_non_json_is_reported_and_skipped(self):
        handler = RecordingHandler()
        result = await SSEParser().parse(
            _lines('data: {"type": "a"}', "data: {not json", 'data: {"type": "b"}'), handler
        )
        assert result.ok
        assert [e[0] for e in handler.events] == ["a", "b"]
        assert handler.parse_errors == ["data: {not json"]
        assert handler.ended == 1

    @pytest.mark.asyncio
    async def test_non_object_json_is_reported(self):
        handler = RecordingHandler()
        await SSEParser().parse(_lines("data: [1, 2]", 'data: {"type": "b"}'), handler)
        assert handler.parse_errors == ["data: [1, 2]"]
        assert [e[0] for e in handler.events] == ["b"]

    @pytest.mark.asyncio
    async def test_handler_shape_errors_do_not_abort(self):
        class Fragile(RecordingHandler):
            def on_event(self, event_type, data):
                if event_type == "bad":
                    return data["missing"]
                return super().on_event(event_type, data)

        handler = Fragile()
        result = await SSEParser().parse(
            _lines('data: {"type": "bad"}', 'data: {"type": "good"}'), handler
        )
        assert result.ok
        assert len(handler.parse_errors) == 1
        assert [e[0] for e in handler.events] == ["good"]


# ---------------------------------------------------------------------------
# event:/data: pairs and actions
# ---------------------------------------------------------------------------

class TestEventDataPairs:
    @pytest.mark.asyncio
    async def test_event_line_tags_next_payload(self):
        handler = RecordingHandler()
        parser = SSEParser(type_field=None)
        await parser.parse(
            _lines("event: text", 'data: {"text": "hi"}', "", 'data: {"text": "untagged"}'),
            handler,
        )
        assert handler.events == [("text", {"text": "hi"}), (None, {"text": "untagged"})]

    @pytest.mark.asyncio
    async def test_stop_event_ends_stream(self):
        handler = RecordingHandler()
        parser = SSEParser(type_field=None, stop_events=frozenset({"done"}))
        result = await parser.parse(
            _lines("event: text", 'data: {"text": "a"}', "", "event: done", "data: {}",
                   "event: text", 'data: {"text": "late"}'),
            handler,
        )
        assert result.ok
        assert len(handler.events) == 1
        assert handler.ended == 1

    @pytest.mark.asyncio
    async def test_stop_action_terminates_without_stream_end(self):
        handler = RecordingHandler({"stop": STOP})
        result = await SSEParser().parse(
            _lines('data: {"type": "stop"}', 'data: {"type": "after"}'), handler
        )
        assert result.ok
        assert [e[0] for e in handler.events] == ["stop"]
        assert handler.ended == 0

    @pytest.mark.asyncio
    async def test_error_action_terminates_with_message(self):
        handler = RecordingHandler({"boom": StreamAction.error("provider exploded")})
        result = await SSEParser().parse(
            _lines('data: {"type": "boom"}', 'data: {"type": "after"}'), handler
        )
        assert not result.ok
        assert result.error == "provider exploded"
        assert len(handler.events) == 1
        assert handler.ended == 0
