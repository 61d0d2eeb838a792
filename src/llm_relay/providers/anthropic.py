"""Anthropic Messages API adapter."""

from __future__ import annotations

import logging
from typing import Any

from llm_relay.providers.base import (
    ProviderAdapter,
    attachment_as_text,
    extract_error_message,
    tool_response_text,
)
from llm_relay.streaming.listener import StreamListener
from llm_relay.streaming.normalizer import StreamNormalizer
from llm_relay.streaming.sse import CONTINUE, STOP, SSEParser, StreamAction
from llm_relay.types import Attachment, ChatRequest, ConversationTurn, Role

_logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 8192
MAX_TOKENS_CEILING = 128000


class AnthropicNormalizer(StreamNormalizer):
    """Normalizes ``content_block_*`` events.

    Tool input arrives as ``input_json_delta`` fragments for the block
    opened by ``content_block_start``; the call is complete at
    ``content_block_stop``.
    """

    provider = "anthropic"
    display_name = "Anthropic"

    def __init__(
        self, listener: StreamListener | None = None, *, reasoning_requested: bool = False
    ) -> None:
        super().__init__(listener, reasoning_requested=reasoning_requested)
        self._tool_blocks: set[int] = set()

    def on_event(self, event_type: str | None, data: dict[str, Any]) -> StreamAction:
        if event_type == "content_block_start":
            index = data.get("index", 0)
            block = data.get("content_block") or {}
            kind = block.get("type")
            if kind in ("thinking", "redacted_thinking"):
                self.thinking.start()
                self.emit_reasoning(block.get("thinking"))
            elif kind == "text":
                self.thinking.close()
                self.emit_text(block.get("text"))
            elif kind == "tool_use":
                self.thinking.close()
                self._tool_blocks.add(index)
                self.tool_calls.feed(index, call_id=block.get("id"), name=block.get("name"))
        elif event_type == "content_block_delta":
            index = data.get("index", 0)
            delta = data.get("delta") or {}
            kind = delta.get("type")
            if kind == "thinking_delta":
                self.emit_reasoning(delta.get("thinking"))
            elif kind == "text_delta":
                self.emit_text(delta.get("text"))
            elif kind == "input_json_delta":
                self.tool_calls.feed(index, arguments=delta.get("partial_json"))
            elif kind == "signature_delta":
                # Thinking signatures are only needed for replaying thinking blocks.
                pass
        elif event_type == "content_block_stop":
            index = data.get("index", 0)
            if index in self._tool_blocks:
                self._tool_blocks.discard(index)
                self.detect_tool_call(self.tool_calls.build(index))
        elif event_type == "message_stop":
            self.thinking.close()
            return STOP
        elif event_type == "error":
            error = data.get("error") or {}
            return self.fail(error.get("message") or "Unknown Anthropic streaming error")
        return CONTINUE


class AnthropicAdapter(ProviderAdapter):
    provider = "anthropic"
    display_name = "Anthropic"
    default_url = "https://api.anthropic.com/v1/messages"
    normalizer_cls = AnthropicNormalizer

    def headers(self) -> dict[str, str]:
        headers = {"x-api-key": self.api_key, "anthropic-version": ANTHROPIC_VERSION}
        headers.update(self.spec.headers)
        return headers

    def parser(self) -> SSEParser:
        return SSEParser(type_field="type")

    def create_normalizer(
        self, request: ChatRequest, listener: StreamListener | None
    ) -> AnthropicNormalizer:
        return AnthropicNormalizer(listener, reasoning_requested=bool(request.thinking.tokens))

    def format_http_error(self, status: int, error_body: str) -> str:
        return f"Anthropic API error ({status}): {extract_error_message(error_body)}"

    # -- request body -----------------------------------------------------

    def build_body(self, request: ChatRequest) -> dict[str, Any]:
        budget = request.thinking.tokens or 0
        max_tokens = DEFAULT_MAX_TOKENS
        if budget > 0:
            max_tokens = min(budget + DEFAULT_MAX_TOKENS, MAX_TOKENS_CEILING)

        body: dict[str, Any] = {
            "model": request.model,
            "messages": self._messages(request.history),
            "max_tokens": max_tokens,
            "stream": True,
        }
        if request.system_prompt:
            body["system"] = request.system_prompt
        if budget > 0:
            body["thinking"] = {"type": "enabled", "budget_tokens": budget}
        elif request.temperature is not None:
            # Extended thinking does not accept a custom temperature.
            body["temperature"] = request.temperature

        tools: list[dict[str, Any]] = [
            {
                "name": t.name,
                "description": t.description,
                "input_schema": t.parameters or {"type": "object", "properties": {}},
            }
            for t in request.tools
        ]
        if request.web_search:
            tools.append({"type": "web_search_20250305", "name": "web_search", "max_uses": 5})
        if tools:
            body["tools"] = tools
        return body

    def _messages(self, history: list[ConversationTurn]) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        for turn in history:
            if turn.role is Role.USER:
                content = [self._attachment_block(a) for a in turn.attachments]
                if turn.text:
                    content.append({"type": "text", "text": turn.text})
                self._append(messages, "user", content)
            elif turn.role is Role.ASSISTANT:
                if turn.text:
                    self._append(messages, "assistant", [{"type": "text", "text": turn.text}])
            elif turn.role is Role.TOOL_CALL and turn.tool_call is not None:
                content = []
                if turn.text:
                    content.append({"type": "text", "text": turn.text})
                content.append({
                    "type": "tool_use",
                    "id": turn.tool_call.id,
                    "name": turn.tool_call.tool_id,
                    "input": turn.tool_call.parameters,
                })
                self._append(messages, "assistant", content)
            elif turn.role is Role.TOOL_RESPONSE:
                self._append(messages, "user", [{
                    "type": "tool_result",
                    "tool_use_id": turn.tool_response_call_id,
                    "content": tool_response_text(turn),
                }])
        return messages

    @staticmethod
    def _append(messages: list[dict[str, Any]], role: str, content: list[dict[str, Any]]) -> None:
        """Append content, merging consecutive messages of the same role."""
        if not content:
            return
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].extend(content)
        else:
            messages.append({"role": role, "content": content})

    @staticmethod
    def _attachment_block(attachment: Attachment) -> dict[str, Any]:
        if attachment.is_image:
            return {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": attachment.mime_type,
                    "data": attachment.base64_data(),
                },
            }
        if attachment.is_pdf:
            return {
                "type": "document",
                "source": {
                    "type": "base64",
                    "media_type": attachment.mime_type,
                    "data": attachment.base64_data(),
                },
            }
        return {"type": "text", "text": attachment_as_text(attachment)}
