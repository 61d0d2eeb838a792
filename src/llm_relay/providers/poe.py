"""Poe bot API adapter."""

from __future__ import annotations

import json
import logging
from typing import Any

from llm_relay.providers.base import ProviderAdapter, tool_response_text
from llm_relay.streaming.normalizer import StreamNormalizer
from llm_relay.streaming.sse import CONTINUE, SSEParser, StreamAction
from llm_relay.types import ChatRequest, ConversationTurn, Role

_logger = logging.getLogger(__name__)


class PoeNormalizer(StreamNormalizer):
    """Normalizes Poe ``event:``/``data:`` streams.

    ``replace_response`` discards everything streamed so far; observers
    receive the replacement as a new partial.
    """

    provider = "poe"
    display_name = "Poe"

    def on_event(self, event_type: str | None, data: dict[str, Any]) -> StreamAction:
        if event_type == "text":
            self.emit_text(data.get("text"))
        elif event_type == "replace_response":
            text = data.get("text") or ""
            if text.strip():
                self.replace_text(text)
        elif event_type == "json":
            choices = data.get("choices") or []
            if choices:
                choice = choices[0]
                delta = choice.get("delta") or {}
                if delta.get("tool_calls"):
                    self.thinking.close()
                    self.tool_calls.feed_openai_delta(delta["tool_calls"])
                if choice.get("finish_reason") == "tool_calls":
                    self.detect_tool_call(self.tool_calls.first_complete())
        elif event_type == "error":
            error_type = data.get("error_type") or "unknown"
            return self.fail(f"Poe API error ({error_type}): {data.get('text') or 'Unknown error'}")
        return CONTINUE


class PoeAdapter(ProviderAdapter):
    provider = "poe"
    display_name = "Poe"
    default_url = "https://api.poe.com/bot/{model}"
    normalizer_cls = PoeNormalizer

    def parser(self) -> SSEParser:
        return SSEParser(type_field=None, stop_events=frozenset({"done"}))

    def build_body(self, request: ChatRequest) -> dict[str, Any]:
        history = request.history
        # Trailing tool rounds travel as tool_calls/tool_results; earlier
        # rounds are folded into the transcript as bot text.
        split = len(history)
        while (
            split >= 2
            and history[split - 1].role is Role.TOOL_RESPONSE
            and history[split - 2].role is Role.TOOL_CALL
        ):
            split -= 2

        query: list[dict[str, Any]] = []
        if request.system_prompt:
            query.append(self._message("system", request.system_prompt))
        for turn in history[:split]:
            query.extend(self._query_messages(turn))

        body: dict[str, Any] = {
            "version": "1.2",
            "type": "query",
            "query": query,
            "user_id": "",
            "conversation_id": "",
            "message_id": "",
        }
        if request.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters or {},
                    },
                }
                for t in request.tools
            ]
        if request.temperature is not None:
            body["temperature"] = request.temperature

        tool_calls: list[dict[str, Any]] = []
        tool_results: list[dict[str, Any]] = []
        pending_name = ""
        for turn in history[split:]:
            if turn.role is Role.TOOL_CALL and turn.tool_call is not None:
                if turn.text:
                    query.append(self._message("bot", turn.text))
                call = turn.tool_call
                tool_calls.append({
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.tool_id, "arguments": json.dumps(call.parameters)},
                })
                pending_name = call.tool_id
            elif turn.role is Role.TOOL_RESPONSE:
                tool_results.append({
                    "role": "tool",
                    "name": pending_name,
                    "tool_call_id": turn.tool_response_call_id,
                    "content": tool_response_text(turn),
                })
        if tool_calls:
            body["tool_calls"] = tool_calls
            body["tool_results"] = tool_results
        return body

    @staticmethod
    def _message(role: str, content: str, **extra: Any) -> dict[str, Any]:
        message = {"role": role, "content": content, "content_type": "text/markdown"}
        message.update(extra)
        return message

    def _query_messages(self, turn: ConversationTurn) -> list[dict[str, Any]]:
        if turn.role is Role.USER:
            extra: dict[str, Any] = {}
            if turn.attachments:
                extra["attachments"] = [
                    {
                        "url": a.remote_ids.get("poe", ""),
                        "content_type": a.mime_type,
                        "name": a.file_name,
                        "inline_ref": None,
                        "parsed_content": None,
                    }
                    for a in turn.attachments
                ]
            return [self._message("user", turn.text, **extra)]
        if turn.role is Role.ASSISTANT:
            return [self._message("bot", turn.text)]
        if turn.role is Role.TOOL_CALL and turn.text:
            return [self._message("bot", turn.text)]
        if turn.role is Role.TOOL_RESPONSE:
            return [self._message(
                "bot", f"Tool {turn.tool_response_call_id} result: {tool_response_text(turn)}"
            )]
        return []
