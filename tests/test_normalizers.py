"""Tests for the per-provider stream normalizers."""

from __future__ import annotations

import logging

import pytest

from llm_relay.providers.anthropic import AnthropicNormalizer
from llm_relay.providers.cohere import CohereNormalizer
from llm_relay.providers.google import GoogleNormalizer
from llm_relay.providers.openai import OpenAINormalizer
from llm_relay.providers.openai_compatible import ChatCompletionsNormalizer
from llm_relay.providers.poe import PoeNormalizer
from llm_relay.streaming.normalizer import StreamNormalizer
from llm_relay.streaming.sse import SSEParser
from llm_relay.types import OutcomeKind, StreamOutcome, ThoughtsStatus

from tests.helpers import Recorder, aiter_lines, chat_chunk, sse


async def _run(normalizer: StreamNormalizer, parser: SSEParser, *blocks: list[str]) -> StreamOutcome:
    lines = [line for block in blocks for line in block]
    await parser.parse(aiter_lines(lines), normalizer)
    return normalizer.outcome()


_DATA_ONLY = SSEParser()
_STRUCTURAL = SSEParser(type_field=None, skip_keepalives=True)
_EVENT_DATA = SSEParser(type_field=None, stop_events=frozenset({"done"}))


# ---------------------------------------------------------------------------
# OpenAI Responses API
# ---------------------------------------------------------------------------

class TestOpenAI:
    @pytest.mark.asyncio
    async def test_text_deltas(self):
        rec = Recorder()
        outcome = await _run(
            OpenAINormalizer(rec), _DATA_ONLY,
            sse({"type": "response.output_text.delta", "delta": "Hel"}),
            sse({"type": "response.output_text.delta", "delta": "lo"}),
            sse({"type": "response.completed", "response": {"output": []}}),
        )
        assert rec.partials == ["Hel", "lo"]
        assert outcome.kind is OutcomeKind.TEXT_COMPLETE
        assert outcome.text == "Hello"
        assert outcome.thinking.status is ThoughtsStatus.NONE

    @pytest.mark.asyncio
    async def test_function_call_item(self):
        outcome = await _run(
            OpenAINormalizer(), _DATA_ONLY,
            sse({"type": "response.output_text.delta", "delta": "Checking."}),
            sse({
                "type": "response.output_item.done",
                "item": {
                    "type": "function_call", "status": "completed", "call_id": "call_9",
                    "name": "get_date_time", "arguments": '{"timezone": "UTC"}',
                },
            }),
            sse({"type": "response.completed", "response": {}}),
        )
        assert outcome.kind is OutcomeKind.TOOL_CALL_DETECTED
        assert outcome.tool_call.id == "call_9"
        assert outcome.tool_call.tool_id == "get_date_time"
        assert outcome.tool_call.parameters == {"timezone": "UTC"}
        assert outcome.preceding_text == "Checking."

    @pytest.mark.asyncio
    async def test_function_call_found_in_completed_response(self):
        outcome = await _run(
            OpenAINormalizer(), _DATA_ONLY,
            sse({"type": "response.completed", "response": {"output": [{
                "type": "function_call", "status": "completed", "call_id": "c2",
                "name": "lookup", "arguments": "{}",
            }]}}),
        )
        assert outcome.tool_call.id == "c2"

    @pytest.mark.asyncio
    async def test_reasoning_phase_order(self):
        rec = Recorder()
        outcome = await _run(
            OpenAINormalizer(rec, reasoning_requested=True), _DATA_ONLY,
            sse({"type": "response.output_item.added", "item": {"type": "reasoning"}}),
            sse({"type": "response.reasoning_summary_text.delta", "delta": "Think"}),
            sse({"type": "response.reasoning_summary_text.delta", "delta": "ing"}),
            sse({"type": "response.output_text.delta", "delta": "Answer"}),
            sse({"type": "response.completed", "response": {}}),
        )
        assert rec.kinds == [
            "thinking_started", "thinking_partial", "thinking_partial",
            "thinking_complete", "partial",
        ]
        assert outcome.thinking.status is ThoughtsStatus.PRESENT
        assert outcome.thinking.thoughts == "Thinking"
        assert outcome.thinking.duration_seconds is not None

    @pytest.mark.asyncio
    async def test_summaries_unavailable_reports_unavailable(self):
        rec = Recorder()
        outcome = await _run(
            OpenAINormalizer(rec, reasoning_requested=True, summaries_available=False),
            _DATA_ONLY,
            sse({"type": "response.created"}),
            sse({"type": "response.output_text.delta", "delta": "Hi"}),
            sse({"type": "response.completed", "response": {}}),
        )
        assert rec.kinds == ["thinking_started", "thinking_complete", "partial"]
        assert rec.events[1][1].status is ThoughtsStatus.UNAVAILABLE
        assert outcome.thinking.status is ThoughtsStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_response_failed(self):
        outcome = await _run(
            OpenAINormalizer(), _DATA_ONLY,
            sse({"type": "response.output_text.delta", "delta": "partial"}),
            sse({"type": "response.failed", "response": {"error": {"message": "server overloaded"}}}),
        )
        assert outcome.is_error
        assert outcome.message == "server overloaded"

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        outcome = await _run(OpenAINormalizer(), _DATA_ONLY, sse({"type": "response.completed"}))
        assert outcome.is_error
        assert outcome.message == "Empty response from OpenAI"


# ---------------------------------------------------------------------------
# Chat-completions (OpenAI-compatible)
# ---------------------------------------------------------------------------

class TestChatCompletions:
    @pytest.mark.asyncio
    async def test_tool_call_on_finish_reason(self):
        outcome = await _run(
            ChatCompletionsNormalizer(), _STRUCTURAL,
            chat_chunk(tool_calls=[{
                "index": 0, "id": "c1", "type": "function",
                "function": {"name": "get_date_time", "arguments": "{}"},
            }]),
            chat_chunk(finish_reason="tool_calls"),
            ["data: [DONE]"],
        )
        assert outcome.kind is OutcomeKind.TOOL_CALL_DETECTED
        assert outcome.tool_call.id == "c1"
        assert outcome.tool_call.tool_id == "get_date_time"
        assert outcome.tool_call.parameters == {}

    @pytest.mark.asyncio
    async def test_argument_fragments_are_concatenated(self):
        outcome = await _run(
            ChatCompletionsNormalizer(), _STRUCTURAL,
            chat_chunk(tool_calls=[{"index": 0, "id": "c1", "function": {"name": "search", "arguments": ""}}]),
            chat_chunk(tool_calls=[{"index": 0, "function": {"arguments": '{"que'}}]),
            chat_chunk(tool_calls=[{"index": 0, "function": {"arguments": 'ry": "cats"}'}}]),
            chat_chunk(finish_reason="tool_calls"),
        )
        assert outcome.tool_call.parameters == {"query": "cats"}

    @pytest.mark.asyncio
    async def test_only_first_complete_call_is_kept(self):
        outcome = await _run(
            ChatCompletionsNormalizer(), _STRUCTURAL,
            chat_chunk(tool_calls=[
                {"index": 0, "id": "a", "function": {"name": "one", "arguments": "{}"}},
                {"index": 1, "id": "b", "function": {"name": "two", "arguments": "{}"}},
            ]),
            chat_chunk(finish_reason="tool_calls"),
        )
        assert outcome.tool_call.id == "a"

    @pytest.mark.asyncio
    async def test_incomplete_arguments_are_not_detected(self):
        outcome = await _run(
            ChatCompletionsNormalizer(), _STRUCTURAL,
            chat_chunk("Let me look."),
            chat_chunk(tool_calls=[{"index": 0, "id": "c1", "function": {"name": "f", "arguments": '{"a": '}}]),
            chat_chunk(finish_reason="tool_calls"),
        )
        assert outcome.kind is OutcomeKind.TEXT_COMPLETE
        assert outcome.text == "Let me look."

    @pytest.mark.asyncio
    async def test_malformed_line_mid_stream(self, caplog):
        rec = Recorder()
        with caplog.at_level(logging.WARNING, logger="llm_relay.streaming.normalizer"):
            outcome = await _run(
                ChatCompletionsNormalizer(rec), _STRUCTURAL,
                chat_chunk("Hel"),
                ["data: {this is not json", ""],
                chat_chunk("lo"),
                ["data: [DONE]"],
            )
        assert rec.partials == ["Hel", "lo"]
        assert outcome.text == "Hello"
        assert "malformed" in caplog.text

    @pytest.mark.asyncio
    async def test_keepalives_and_reasoning(self):
        rec = Recorder()
        outcome = await _run(
            ChatCompletionsNormalizer(rec, reasoning_requested=True), _STRUCTURAL,
            [": OPENROUTER PROCESSING", ""],
            chat_chunk(reasoning_details=[{"type": "reasoning.text", "text": "hmm"}]),
            chat_chunk(reasoning="more"),
            chat_chunk("Done"),
            chat_chunk(finish_reason="stop"),
        )
        assert rec.kinds == [
            "thinking_started", "thinking_partial", "thinking_partial",
            "thinking_complete", "partial",
        ]
        assert outcome.thinking.thoughts == "hmmmore"

    @pytest.mark.asyncio
    async def test_requested_reasoning_without_content_is_unavailable(self):
        rec = Recorder()
        outcome = await _run(
            ChatCompletionsNormalizer(rec, reasoning_requested=True), _STRUCTURAL,
            chat_chunk("Plain answer", finish_reason="stop"),
        )
        assert outcome.thinking.status is ThoughtsStatus.UNAVAILABLE
        assert "thinking_started" not in rec.kinds

    @pytest.mark.asyncio
    async def test_in_band_error(self):
        outcome = await _run(
            ChatCompletionsNormalizer(), _STRUCTURAL,
            chat_chunk("partial"),
            sse({"error": {"message": "upstream timeout", "code": 502}}),
            chat_chunk("never"),
        )
        assert outcome.is_error
        assert outcome.message == "upstream timeout"

    @pytest.mark.asyncio
    async def test_call_without_finish_reason_detected_at_end(self):
        outcome = await _run(
            ChatCompletionsNormalizer(), _STRUCTURAL,
            chat_chunk(tool_calls=[{"index": 0, "id": "x", "function": {"name": "f", "arguments": "{}"}}]),
            chat_chunk(finish_reason="stop"),
        )
        assert outcome.tool_call.id == "x"


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

class TestAnthropic:
    @pytest.mark.asyncio
    async def test_thinking_text_and_tool_use(self):
        rec = Recorder()
        outcome = await _run(
            AnthropicNormalizer(rec, reasoning_requested=True), _DATA_ONLY,
            sse({"type": "message_start", "message": {}}, "message_start"),
            sse({"type": "content_block_start", "index": 0,
                 "content_block": {"type": "thinking", "thinking": ""}}, "content_block_start"),
            sse({"type": "content_block_delta", "index": 0,
                 "delta": {"type": "thinking_delta", "thinking": "Let me"}}, "content_block_delta"),
            sse({"type": "content_block_delta", "index": 0,
                 "delta": {"type": "thinking_delta", "thinking": " think"}}, "content_block_delta"),
            sse({"type": "content_block_delta", "index": 0,
                 "delta": {"type": "signature_delta", "signature": "abc"}}, "content_block_delta"),
            sse({"type": "content_block_stop", "index": 0}, "content_block_stop"),
            sse({"type": "content_block_start", "index": 1,
                 "content_block": {"type": "text", "text": ""}}, "content_block_start"),
            sse({"type": "content_block_delta", "index": 1,
                 "delta": {"type": "text_delta", "text": "I'll check."}}, "content_block_delta"),
            sse({"type": "content_block_stop", "index": 1}, "content_block_stop"),
            sse({"type": "content_block_start", "index": 2,
                 "content_block": {"type": "tool_use", "id": "toolu_1", "name": "get_date_time", "input": {}}},
                "content_block_start"),
            sse({"type": "content_block_delta", "index": 2,
                 "delta": {"type": "input_json_delta", "partial_json": '{"timezone": '}}, "content_block_delta"),
            sse({"type": "content_block_delta", "index": 2,
                 "delta": {"type": "input_json_delta", "partial_json": '"UTC"}'}}, "content_block_delta"),
            sse({"type": "content_block_stop", "index": 2}, "content_block_stop"),
            sse({"type": "message_stop"}, "message_stop"),
        )
        assert rec.kinds == [
            "thinking_started", "thinking_partial", "thinking_partial",
            "thinking_complete", "partial",
        ]
        assert outcome.kind is OutcomeKind.TOOL_CALL_DETECTED
        assert outcome.preceding_text == "I'll check."
        assert outcome.tool_call.id == "toolu_1"
        assert outcome.tool_call.parameters == {"timezone": "UTC"}
        assert outcome.thinking.thoughts == "Let me think"

    @pytest.mark.asyncio
    async def test_tool_use_without_input(self):
        outcome = await _run(
            AnthropicNormalizer(), _DATA_ONLY,
            sse({"type": "content_block_start", "index": 0,
                 "content_block": {"type": "tool_use", "id": "t", "name": "now"}}),
            sse({"type": "content_block_stop", "index": 0}),
            sse({"type": "message_stop"}),
        )
        assert outcome.tool_call.parameters == {}

    @pytest.mark.asyncio
    async def test_redacted_thinking_is_unavailable(self):
        rec = Recorder()
        outcome = await _run(
            AnthropicNormalizer(rec), _DATA_ONLY,
            sse({"type": "content_block_start", "index": 0,
                 "content_block": {"type": "redacted_thinking", "data": "xyz"}}),
            sse({"type": "content_block_start", "index": 1, "content_block": {"type": "text", "text": "ok"}}),
            sse({"type": "message_stop"}),
        )
        assert outcome.text == "ok"
        assert outcome.thinking.status is ThoughtsStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_error_event(self):
        outcome = await _run(
            AnthropicNormalizer(), _DATA_ONLY,
            sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}, "error"),
        )
        assert outcome.message == "Overloaded"


# ---------------------------------------------------------------------------
# Google Gemini
# ---------------------------------------------------------------------------

def _gemini(*parts: dict, finish_reason: str | None = None) -> list[str]:
    candidate: dict = {"content": {"role": "model", "parts": list(parts)}}
    if finish_reason:
        candidate["finishReason"] = finish_reason
    return sse({"candidates": [candidate]})


class TestGoogle:
    @pytest.mark.asyncio
    async def test_thoughts_then_text(self):
        rec = Recorder()
        outcome = await _run(
            GoogleNormalizer(rec), _STRUCTURAL,
            _gemini({"text": "pondering", "thought": True}),
            _gemini({"text": "Hi "}),
            _gemini({"text": "there"}, finish_reason="STOP"),
        )
        assert rec.kinds == [
            "thinking_started", "thinking_partial", "thinking_complete", "partial", "partial",
        ]
        assert outcome.text == "Hi there"
        assert outcome.thinking.thoughts == "pondering"

    @pytest.mark.asyncio
    async def test_function_call_keeps_signature(self):
        outcome = await _run(
            GoogleNormalizer(), _STRUCTURAL,
            _gemini({"functionCall": {"name": "get_date_time", "args": {"timezone": "UTC"}},
                     "thoughtSignature": "sig=="}, finish_reason="STOP"),
        )
        call = outcome.tool_call
        assert call.id.startswith("google_")
        assert call.tool_id == "get_date_time"
        assert call.parameters == {"timezone": "UTC"}
        assert call.thought_signature == "sig=="

    @pytest.mark.asyncio
    async def test_blocked_finish_reason(self):
        outcome = await _run(GoogleNormalizer(), _STRUCTURAL, _gemini(finish_reason="SAFETY"))
        assert outcome.message == "Google API streaming blocked due to: SAFETY"

    @pytest.mark.asyncio
    async def test_error_object(self):
        outcome = await _run(
            GoogleNormalizer(), _STRUCTURAL, sse({"error": {"code": 429, "message": "quota"}}),
        )
        assert outcome.message == "Google API streaming error: quota"


# ---------------------------------------------------------------------------
# Poe
# ---------------------------------------------------------------------------

class TestPoe:
    @pytest.mark.asyncio
    async def test_text_and_done(self):
        rec = Recorder()
        outcome = await _run(
            PoeNormalizer(rec), _EVENT_DATA,
            sse({"text": "Hel"}, "text"),
            sse({"text": "lo"}, "text"),
            sse({}, "done"),
            sse({"text": "ignored"}, "text"),
        )
        assert rec.partials == ["Hel", "lo"]
        assert outcome.text == "Hello"

    @pytest.mark.asyncio
    async def test_replace_response(self):
        outcome = await _run(
            PoeNormalizer(), _EVENT_DATA,
            sse({"text": "draft"}, "text"),
            sse({"text": "Final"}, "replace_response"),
            sse({}, "done"),
        )
        assert outcome.text == "Final"

    @pytest.mark.asyncio
    async def test_tool_call(self):
        outcome = await _run(
            PoeNormalizer(), _EVENT_DATA,
            sse({"choices": [{"delta": {"tool_calls": [{
                "index": 0, "id": "call_1", "type": "function",
                "function": {"name": "get_date_time", "arguments": ""},
            }]}}]}, "json"),
            sse({"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": "{}"}}]},
                              "finish_reason": "tool_calls"}]}, "json"),
            sse({}, "done"),
        )
        assert outcome.tool_call.id == "call_1"
        assert outcome.tool_call.provider == "poe"

    @pytest.mark.asyncio
    async def test_error_event(self):
        outcome = await _run(
            PoeNormalizer(), _EVENT_DATA,
            sse({"text": "slow down", "error_type": "rate_limit"}, "error"),
        )
        assert outcome.message == "Poe API error (rate_limit): slow down"


# ---------------------------------------------------------------------------
# Cohere
# ---------------------------------------------------------------------------

class TestCohere:
    @pytest.mark.asyncio
    async def test_text(self):
        rec = Recorder()
        outcome = await _run(
            CohereNormalizer(rec), _DATA_ONLY,
            sse({"type": "message-start"}, "message-start"),
            sse({"type": "content-delta", "index": 0,
                 "delta": {"message": {"content": {"text": "Bon"}}}}, "content-delta"),
            sse({"type": "content-delta", "index": 0,
                 "delta": {"message": {"content": {"text": "jour"}}}}, "content-delta"),
            sse({"type": "message-end", "delta": {"finish_reason": "COMPLETE"}}, "message-end"),
        )
        assert rec.partials == ["Bon", "jour"]
        assert outcome.text == "Bonjour"

    @pytest.mark.asyncio
    async def test_tool_call_with_plan(self):
        rec = Recorder()
        normalizer = CohereNormalizer(rec)
        outcome = await _run(
            normalizer, _DATA_ONLY,
            sse({"type": "tool-plan-delta", "delta": {"message": {"tool_plan": "I will check"}}}),
            sse({"type": "tool-call-start", "index": 0, "delta": {"message": {"tool_calls": {
                "id": "tc_1", "type": "function",
                "function": {"name": "get_date_time", "arguments": ""},
            }}}}),
            sse({"type": "tool-call-delta", "index": 0,
                 "delta": {"message": {"tool_calls": {"function": {"arguments": '{"timezone":'}}}}}),
            sse({"type": "tool-call-delta", "index": 0,
                 "delta": {"message": {"tool_calls": {"function": {"arguments": ' "UTC"}'}}}}}),
            sse({"type": "tool-call-end", "index": 0}),
            sse({"type": "message-end", "delta": {"finish_reason": "TOOL_CALL"}}),
        )
        assert outcome.tool_call.id == "tc_1"
        assert outcome.tool_call.parameters == {"timezone": "UTC"}
        assert outcome.preceding_text == ""
        assert normalizer.tool_plan == "I will check"
        assert rec.partials == []


# ---------------------------------------------------------------------------
# Cross-provider properties
# ---------------------------------------------------------------------------

class TestPartialsMatchFinalText:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("chunks", [["a"], ["Hel", "lo", " ", "world"], ["x"] * 20])
    async def test_concatenated_partials_equal_outcome_text(self, chunks):
        rec = Recorder()
        outcome = await _run(
            ChatCompletionsNormalizer(rec), _STRUCTURAL,
            *[chat_chunk(c) for c in chunks],
            chat_chunk(finish_reason="stop"),
        )
        assert "".join(rec.partials) == outcome.text == "".join(chunks)

    @pytest.mark.asyncio
    async def test_thinking_phase_closes_once_at_stream_end(self):
        rec = Recorder()
        await _run(
            ChatCompletionsNormalizer(rec), _STRUCTURAL,
            chat_chunk(reasoning_content="only thoughts"),
        )
        assert rec.kinds.count("thinking_started") == 1
        assert rec.kinds.count("thinking_complete") == 1
        assert rec.kinds[-1] == "thinking_complete"
