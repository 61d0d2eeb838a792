"""Cohere v2 chat adapter."""

from __future__ import annotations

import json
import logging
from typing import Any

from llm_relay.providers.base import ProviderAdapter, attachment_as_text, tool_response_text
from llm_relay.streaming.listener import StreamListener
from llm_relay.streaming.normalizer import StreamNormalizer
from llm_relay.streaming.sse import CONTINUE, STOP, SSEParser, StreamAction
from llm_relay.types import Attachment, ChatRequest, ConversationTurn, Role

_logger = logging.getLogger(__name__)


def _first_tool_call(message: dict[str, Any]) -> dict[str, Any]:
    calls = message.get("tool_calls")
    if isinstance(calls, list):
        return calls[0] if calls else {}
    return calls or {}


class CohereNormalizer(StreamNormalizer):
    """Normalizes Cohere v2 stream events.

    The tool plan streamed ahead of a call is not answer text; it is kept
    on :attr:`tool_plan` and never forwarded as a partial.
    """

    provider = "cohere"
    display_name = "Cohere"

    def __init__(
        self, listener: StreamListener | None = None, *, reasoning_requested: bool = False
    ) -> None:
        super().__init__(listener, reasoning_requested=reasoning_requested)
        self._tool_plan: list[str] = []
        self._current_index: int = 0

    @property
    def tool_plan(self) -> str:
        return "".join(self._tool_plan)

    def on_event(self, event_type: str | None, data: dict[str, Any]) -> StreamAction:
        message = (data.get("delta") or {}).get("message") or {}

        if event_type == "content-delta":
            content = message.get("content") or {}
            self.emit_reasoning(content.get("thinking"))
            self.emit_text(content.get("text"))
        elif event_type == "tool-plan-delta":
            plan = message.get("tool_plan")
            if plan:
                self._tool_plan.append(plan)
        elif event_type == "tool-call-start":
            self.thinking.close()
            self._current_index = data.get("index", self._current_index)
            call = _first_tool_call(message)
            function = call.get("function") or {}
            self.tool_calls.feed(
                self._current_index,
                call_id=call.get("id"),
                name=function.get("name"),
                arguments=function.get("arguments"),
            )
        elif event_type == "tool-call-delta":
            function = _first_tool_call(message).get("function") or {}
            self.tool_calls.feed(
                data.get("index", self._current_index), arguments=function.get("arguments")
            )
        elif event_type == "tool-call-end":
            self.detect_tool_call(self.tool_calls.build(data.get("index", self._current_index)))
        elif event_type == "message-end":
            finish_reason = (data.get("delta") or {}).get("finish_reason")
            _logger.debug("Cohere message ended with finish_reason=%s", finish_reason)
            self.thinking.close()
            return STOP
        elif event_type == "error":
            return self.fail(data.get("message") or "Unknown Cohere streaming error")
        return CONTINUE


class CohereAdapter(ProviderAdapter):
    provider = "cohere"
    display_name = "Cohere"
    default_url = "https://api.cohere.ai/v2/chat"
    normalizer_cls = CohereNormalizer

    def parser(self) -> SSEParser:
        return SSEParser(type_field="type")

    def build_body(self, request: ChatRequest) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        for turn in request.history:
            message = self._message(turn)
            if message is not None:
                messages.append(message)

        body: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "stream": True,
        }
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.thinking.tokens:
            body["thinking"] = {"type": "enabled", "token_budget": request.thinking.tokens}
        if request.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters or {"type": "object", "properties": {}},
                    },
                }
                for t in request.tools
            ]
        if request.web_search:
            body["connectors"] = [{"id": "web-search"}]
        return body

    def _message(self, turn: ConversationTurn) -> dict[str, Any] | None:
        if turn.role is Role.USER:
            if not turn.attachments:
                return {"role": "user", "content": turn.text}
            content: list[dict[str, Any]] = [{"type": "text", "text": turn.text}]
            content.extend(self._attachment_part(a) for a in turn.attachments)
            return {"role": "user", "content": content}
        if turn.role is Role.ASSISTANT:
            return {"role": "assistant", "content": turn.text}
        if turn.role is Role.TOOL_CALL and turn.tool_call is not None:
            message: dict[str, Any] = {
                "role": "assistant",
                "tool_calls": [{
                    "id": turn.tool_call.id,
                    "type": "function",
                    "function": {
                        "name": turn.tool_call.tool_id,
                        "arguments": json.dumps(turn.tool_call.parameters),
                    },
                }],
            }
            if turn.text:
                message["tool_plan"] = turn.text
            return message
        if turn.role is Role.TOOL_RESPONSE:
            return {
                "role": "tool",
                "tool_call_id": turn.tool_response_call_id,
                "content": tool_response_text(turn),
            }
        return None

    @staticmethod
    def _attachment_part(attachment: Attachment) -> dict[str, Any]:
        if attachment.is_image:
            return {
                "type": "image_url",
                "image_url": {
                    "url": f"data:{attachment.mime_type};base64,{attachment.base64_data()}"
                },
            }
        return {"type": "text", "text": attachment_as_text(attachment)}
