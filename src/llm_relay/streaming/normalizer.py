"""Shared state machine behind every provider normalizer.

A normalizer consumes the JSON events of one HTTP stream and produces one
:class:`~llm_relay.types.StreamOutcome`.  Subclasses only translate their
provider's field names into calls on the helpers below.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from llm_relay.streaming.listener import StreamListener
from llm_relay.streaming.sse import StreamAction
from llm_relay.types import StreamOutcome, ThinkingInfo, ThoughtsStatus, ToolCall

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Thinking phase
# ---------------------------------------------------------------------------

class ThinkingPhase:
    """Tracks the single reasoning phase of one provider call.

    ``start()`` and ``close()`` fire at most once each, so listeners see
    exactly one started and one complete event, with partials in between.
    Reasoning that arrives after the phase closed is kept out of the
    event stream.
    """

    def __init__(self, listener: StreamListener) -> None:
        self._listener = listener
        self._parts: list[str] = []
        self._started_at: float | None = None
        self._duration: float | None = None
        self._closed = False

    @property
    def started(self) -> bool:
        return self._started_at is not None

    @property
    def active(self) -> bool:
        return self.started and not self._closed

    @property
    def thoughts(self) -> str:
        return "".join(self._parts)

    def start(self) -> None:
        if self.started:
            return
        self._started_at = time.monotonic()
        self._listener.on_thinking_started()

    def add(self, text: str) -> None:
        if not text:
            return
        if self._closed:
            _logger.debug("Dropping reasoning received after the thinking phase closed")
            return
        self.start()
        self._parts.append(text)
        self._listener.on_thinking_partial(text)

    def close(self) -> None:
        if not self.active or self._started_at is None:
            return
        self._closed = True
        self._duration = time.monotonic() - self._started_at
        self._listener.on_thinking_complete(self.info())

    def info(self, requested: bool = False) -> ThinkingInfo:
        """Summarize the phase.

        *requested* marks calls that asked for reasoning; those report
        ``UNAVAILABLE`` even when the provider never opened a phase.
        """
        if self._parts:
            return ThinkingInfo(self.thoughts, self._duration, ThoughtsStatus.PRESENT)
        if self.started or requested:
            return ThinkingInfo(None, self._duration, ThoughtsStatus.UNAVAILABLE)
        return ThinkingInfo()


# ---------------------------------------------------------------------------
# Tool-call accumulation
# ---------------------------------------------------------------------------

class ToolCallAccumulator:
    """Assemble tool calls from streamed fragments.

    Providers send a call's id and name once and its argument JSON as string
    fragments that must be concatenated.  Entries are keyed by the stream's
    index (or id) and only become a :class:`ToolCall` once id and name are
    known and the argument buffer parses as a JSON object.
    """

    def __init__(self, provider: str) -> None:
        self._provider = provider
        self._calls: dict[Any, dict[str, str]] = {}

    def feed(
        self,
        key: Any,
        *,
        call_id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
    ) -> None:
        entry = self._calls.setdefault(key, {"id": "", "name": "", "arguments": ""})
        if call_id:
            entry["id"] = call_id
        if name:
            entry["name"] = name
        if arguments:
            entry["arguments"] += arguments

    def feed_openai_delta(self, tool_calls: list[dict[str, Any]]) -> None:
        """Process a chat-completions ``delta.tool_calls`` list."""
        for tc in tool_calls:
            func = tc.get("function") or {}
            self.feed(
                tc.get("index", 0),
                call_id=tc.get("id"),
                name=func.get("name"),
                arguments=func.get("arguments"),
            )

    def has_calls(self) -> bool:
        return bool(self._calls)

    def build(self, key: Any, **extra: Any) -> ToolCall | None:
        """Return the call stored under *key* if it is complete."""
        entry = self._calls.get(key)
        if entry is None or not entry["id"] or not entry["name"]:
            return None
        raw_args = entry["arguments"].strip() or "{}"
        try:
            params = json.loads(raw_args)
        except json.JSONDecodeError:
            _logger.warning(
                "Tool call %s has unparseable arguments: %s", entry["name"], raw_args[:200]
            )
            return None
        if not isinstance(params, dict):
            return None
        return ToolCall(
            id=entry["id"],
            tool_id=entry["name"],
            parameters=params,
            provider=self._provider,
            **extra,
        )

    def first_complete(self) -> ToolCall | None:
        """Return the first complete call in key order.

        Only one call per stream is carried through to the tool loop;
        any further calls are logged and dropped.
        """
        found: ToolCall | None = None
        for key in self._calls:
            call = self.build(key)
            if call is None:
                continue
            if found is None:
                found = call
            else:
                _logger.warning(
                    "Ignoring additional tool call %s; only the first call per response is executed",
                    call.tool_id,
                )
        return found


# ---------------------------------------------------------------------------
# Normalizer base
# ---------------------------------------------------------------------------

class StreamNormalizer:
    """Base class for per-provider normalizers.

    Implements the :class:`~llm_relay.streaming.sse.StreamHandler` protocol.
    Subclasses implement :meth:`on_event` and use the helpers to record
    text, reasoning, tool calls and errors.
    """

    provider = ""
    display_name = ""

    def __init__(
        self,
        listener: StreamListener | None = None,
        *,
        reasoning_requested: bool = False,
        provider: str | None = None,
        display_name: str | None = None,
    ) -> None:
        if provider is not None:
            self.provider = provider
        if display_name is not None:
            self.display_name = display_name
        self.listener = listener or StreamListener()
        self.thinking = ThinkingPhase(self.listener)
        self.tool_calls = ToolCallAccumulator(self.provider)
        self.reasoning_requested = reasoning_requested
        self._text: list[str] = []
        self._tool_call: ToolCall | None = None
        self._error: str | None = None

    # -- StreamHandler ----------------------------------------------------

    def on_event(self, event_type: str | None, data: dict[str, Any]) -> StreamAction:
        raise NotImplementedError

    def on_stream_end(self) -> None:
        self.thinking.close()

    def on_parse_error(self, line: str, error: Exception) -> None:
        _logger.warning(
            "Skipping malformed %s stream chunk (%s): %s",
            self.display_name or self.provider,
            error,
            line[:200],
        )

    # -- helpers ----------------------------------------------------------

    @property
    def text(self) -> str:
        return "".join(self._text)

    @property
    def tool_call(self) -> ToolCall | None:
        return self._tool_call

    def emit_text(self, text: str | None) -> None:
        if not text:
            return
        self.thinking.close()
        self._text.append(text)
        self.listener.on_partial_response(text)

    def replace_text(self, text: str) -> None:
        """Discard the buffered text and start over with *text*."""
        self.thinking.close()
        self._text = [text] if text else []
        if text:
            self.listener.on_partial_response(text)

    def emit_reasoning(self, text: str | None) -> None:
        if text:
            self.thinking.add(text)

    def detect_tool_call(self, call: ToolCall | None) -> None:
        if call is None:
            return
        self.thinking.close()
        if self._tool_call is None:
            _logger.debug("%s tool call detected: %s (%s)", self.provider, call.tool_id, call.id)
            self._tool_call = call
        elif call.id != self._tool_call.id:
            _logger.warning(
                "Ignoring additional tool call %s; only the first call per response is executed",
                call.tool_id,
            )

    def fail(self, message: str) -> StreamAction:
        self.thinking.close()
        self._error = message
        return StreamAction.error(message)

    def outcome(self) -> StreamOutcome:
        """Select the terminal outcome: error, tool call, text, empty."""
        self.thinking.close()
        if self._error is not None:
            return StreamOutcome.failed(self._error)
        info = self.thinking.info(self.reasoning_requested)
        if self._tool_call is not None:
            return StreamOutcome.tool_call_detected(self._tool_call, self.text, info)
        if self.text:
            return StreamOutcome.text_complete(self.text, info)
        return StreamOutcome.failed(f"Empty response from {self.display_name or self.provider}")
