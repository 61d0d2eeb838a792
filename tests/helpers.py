"""Shared test helpers."""

from __future__ import annotations

import json
from typing import Any

import httpx

from llm_relay.core.loop import LoopCallbacks
from llm_relay.types import ThinkingInfo


def sse(payload: dict[str, Any], event: str | None = None) -> list[str]:
    """Render one SSE block as lines."""
    lines = [f"event: {event}"] if event else []
    lines.append("data: " + json.dumps(payload))
    lines.append("")
    return lines


def sse_body(*blocks: list[str], done: bool = False) -> bytes:
    lines = [line for block in blocks for line in block]
    if done:
        lines += ["data: [DONE]", ""]
    return ("\n".join(lines) + "\n").encode()


def sse_response(*blocks: list[str], done: bool = False) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        content=sse_body(*blocks, done=done),
    )


def chat_chunk(
    content: str | None = None,
    *,
    tool_calls: list[dict[str, Any]] | None = None,
    finish_reason: str | None = None,
    **delta_extra: Any,
) -> list[str]:
    """One chat-completions chunk as SSE lines."""
    delta: dict[str, Any] = dict(delta_extra)
    if content is not None:
        delta["content"] = content
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    return sse({"choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}]})


async def aiter_lines(lines: list[str]):
    for line in lines:
        yield line


class Recorder(LoopCallbacks):
    """Records every listener callback in order."""

    def __init__(self) -> None:
        self.events: list[tuple[Any, ...]] = []

    def on_partial_response(self, text: str) -> None:
        self.events.append(("partial", text))

    def on_thinking_started(self) -> None:
        self.events.append(("thinking_started",))

    def on_thinking_partial(self, text: str) -> None:
        self.events.append(("thinking_partial", text))

    def on_thinking_complete(self, info: ThinkingInfo) -> None:
        self.events.append(("thinking_complete", info))

    @property
    def partials(self) -> list[str]:
        return [e[1] for e in self.events if e[0] == "partial"]

    @property
    def kinds(self) -> list[str]:
        return [e[0] for e in self.events]
