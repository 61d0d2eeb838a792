"""Chat-completions adapters for OpenAI-compatible aggregators."""

from __future__ import annotations

import json
import logging
from typing import Any

from llm_relay.providers.base import ProviderAdapter, tool_response_text
from llm_relay.streaming.listener import StreamListener
from llm_relay.streaming.normalizer import StreamNormalizer
from llm_relay.streaming.sse import CONTINUE, SSEParser, StreamAction
from llm_relay.types import Attachment, ChatRequest, ConversationTurn, Role

_logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 8192


class ChatCompletionsNormalizer(StreamNormalizer):
    """Normalizes ``chat.completion.chunk`` streams.

    Reasoning shows up under different keys depending on the upstream
    model: ``reasoning_details``, ``reasoning`` or ``reasoning_content``.
    """

    provider = "openai_compatible"
    display_name = "OpenAI-compatible provider"

    def on_event(self, event_type: str | None, data: dict[str, Any]) -> StreamAction:
        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            return self.fail(message or "Unknown streaming error")

        choices = data.get("choices") or []
        if not choices:
            return CONTINUE
        choice = choices[0]
        delta = choice.get("delta") or {}

        for detail in delta.get("reasoning_details") or []:
            self.emit_reasoning(detail.get("text") or detail.get("reasoning") or detail.get("summary"))
        if not delta.get("reasoning_details"):
            self.emit_reasoning(delta.get("reasoning") or delta.get("reasoning_content"))

        self.emit_text(delta.get("content"))

        if delta.get("tool_calls"):
            self.thinking.close()
            self.tool_calls.feed_openai_delta(delta["tool_calls"])

        if choice.get("finish_reason") == "tool_calls":
            self.detect_tool_call(self.tool_calls.first_complete())
        return CONTINUE

    def on_stream_end(self) -> None:
        # Some upstreams end with finish_reason "stop" even after streaming a call.
        if self.tool_call is None and self.tool_calls.has_calls():
            self.detect_tool_call(self.tool_calls.first_complete())
        super().on_stream_end()


class OpenAICompatibleAdapter(ProviderAdapter):
    """Any endpoint speaking the chat-completions protocol.

    Requires ``url`` in the provider config; subclasses supply defaults for
    the known aggregators.
    """

    provider = "openai_compatible"
    display_name = "OpenAI-compatible provider"
    default_url = ""
    normalizer_cls = ChatCompletionsNormalizer

    def parser(self) -> SSEParser:
        return SSEParser(type_field=None, skip_keepalives=True)

    def create_normalizer(
        self, request: ChatRequest, listener: StreamListener | None
    ) -> StreamNormalizer:
        effort = request.thinking.effort
        return self.normalizer_cls(
            listener,
            reasoning_requested=bool(effort and effort != "none"),
            provider=self.provider,
            display_name=self.display_name,
        )

    # -- request body -----------------------------------------------------

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
            "max_tokens": DEFAULT_MAX_TOKENS,
        }
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.thinking.effort and request.thinking.effort != "none":
            body["reasoning"] = {"effort": request.thinking.effort}
        elif request.thinking.tokens:
            body["reasoning"] = {"max_tokens": request.thinking.tokens}
        if request.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": {
                            "type": "object",
                            "properties": t.properties,
                            "required": t.required,
                        },
                    },
                }
                for t in request.tools
            ]
        return body

    def _message(self, turn: ConversationTurn) -> dict[str, Any] | None:
        if turn.role is Role.USER:
            if not turn.attachments:
                return {"role": "user", "content": turn.text}
            content: list[dict[str, Any]] = []
            if turn.text:
                content.append({"type": "text", "text": turn.text})
            content.extend(self._attachment_part(a) for a in turn.attachments)
            return {"role": "user", "content": content}
        if turn.role is Role.ASSISTANT:
            return {"role": "assistant", "content": turn.text}
        if turn.role is Role.TOOL_CALL and turn.tool_call is not None:
            return {
                "role": "assistant",
                "content": turn.text or None,
                "tool_calls": [{
                    "id": turn.tool_call.id,
                    "type": "function",
                    "function": {
                        "name": turn.tool_call.tool_id,
                        "arguments": json.dumps(turn.tool_call.parameters),
                    },
                }],
            }
        if turn.role is Role.TOOL_RESPONSE:
            return {
                "role": "tool",
                "tool_call_id": turn.tool_response_call_id,
                "content": tool_response_text(turn),
            }
        return None

    @staticmethod
    def _attachment_part(attachment: Attachment) -> dict[str, Any]:
        data_url = f"data:{attachment.mime_type};base64,{attachment.base64_data()}"
        if attachment.is_image:
            return {"type": "image_url", "image_url": {"url": data_url}}
        return {"type": "file", "file": {"filename": attachment.file_name, "file_data": data_url}}


class OpenRouterAdapter(OpenAICompatibleAdapter):
    provider = "openrouter"
    display_name = "OpenRouter"
    default_url = "https://openrouter.ai/api/v1/chat/completions"

    def headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": "https://github.com/llm-relay/llm-relay",
            "X-Title": "llm-relay",
        }
        headers.update(self.spec.headers)
        return headers

    def build_body(self, request: ChatRequest) -> dict[str, Any]:
        body = super().build_body(request)
        if request.web_search:
            body["plugins"] = [{"id": "web"}]
        return body


class LLMStatsAdapter(OpenAICompatibleAdapter):
    provider = "llmstats"
    display_name = "LLM Stats"
