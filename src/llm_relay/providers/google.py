"""Google Gemini ``streamGenerateContent`` adapter."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from llm_relay.providers.base import ProviderAdapter, tool_names_by_call_id, tool_response_text
from llm_relay.streaming.sse import CONTINUE, SSEParser, StreamAction
from llm_relay.streaming.normalizer import StreamNormalizer
from llm_relay.types import Attachment, ChatRequest, ConversationTurn, Role, ToolCall

_logger = logging.getLogger(__name__)


class GoogleNormalizer(StreamNormalizer):
    """Normalizes Gemini chunks.

    Chunks carry no event type, so dispatch is on structure: an ``error``
    object, then ``candidates[0]``.  Function calls arrive whole, never as
    fragments.
    """

    provider = "google"
    display_name = "Google"

    def on_event(self, event_type: str | None, data: dict[str, Any]) -> StreamAction:
        error = data.get("error")
        if isinstance(error, dict):
            return self.fail(f"Google API streaming error: {error.get('message', 'unknown error')}")

        candidates = data.get("candidates") or []
        if not candidates:
            return CONTINUE
        candidate = candidates[0]

        for part in (candidate.get("content") or {}).get("parts") or []:
            if part.get("thought") is True:
                self.emit_reasoning(part.get("text"))
            elif "functionCall" in part:
                fc = part["functionCall"]
                self.detect_tool_call(ToolCall(
                    id=fc.get("id") or f"google_{uuid.uuid4().hex[:12]}",
                    tool_id=fc["name"],
                    parameters=fc.get("args") or {},
                    provider=self.provider,
                    thought_signature=part.get("thoughtSignature"),
                ))
            elif part.get("text"):
                self.emit_text(part["text"])

        finish_reason = candidate.get("finishReason")
        if finish_reason and finish_reason != "STOP":
            return self.fail(f"Google API streaming blocked due to: {finish_reason}")
        return CONTINUE


class GoogleAdapter(ProviderAdapter):
    provider = "google"
    display_name = "Google"
    default_url = (
        "https://generativelanguage.googleapis.com/v1beta/models/"
        "{model}:streamGenerateContent?alt=sse"
    )
    normalizer_cls = GoogleNormalizer

    def headers(self) -> dict[str, str]:
        headers = {"x-goog-api-key": self.api_key}
        headers.update(self.spec.headers)
        return headers

    def parser(self) -> SSEParser:
        return SSEParser(type_field=None)

    # -- request body -----------------------------------------------------

    def build_body(self, request: ChatRequest) -> dict[str, Any]:
        contents: list[dict[str, Any]] = []
        if request.system_prompt:
            contents.append({"role": "user", "parts": [{"text": request.system_prompt}]})
        names = tool_names_by_call_id(request.history)
        for turn in request.history:
            content = self._content(turn, names)
            if content is not None:
                contents.append(content)

        body: dict[str, Any] = {"contents": contents}

        tools: list[dict[str, Any]] = []
        if request.tools:
            tools.append({"functionDeclarations": [
                {"name": t.name, "description": t.description, "parameters": t.parameters}
                for t in request.tools
            ]})
        if request.web_search:
            tools.append({"google_search": {}})
        if tools:
            body["tools"] = tools

        generation: dict[str, Any] = {}
        if request.temperature is not None:
            generation["temperature"] = request.temperature
        if "flash-lite" not in request.model:
            thinking: dict[str, Any] = {"includeThoughts": True}
            if request.thinking.effort and request.thinking.effort != "none":
                thinking["thinkingLevel"] = request.thinking.effort.upper()
            elif request.thinking.tokens is not None:
                thinking["thinkingBudget"] = request.thinking.tokens
            generation["thinkingConfig"] = thinking
        if generation:
            body["generationConfig"] = generation
        return body

    def _content(self, turn: ConversationTurn, names: dict[str, str]) -> dict[str, Any] | None:
        if turn.role is Role.USER:
            parts: list[dict[str, Any]] = []
            if turn.text:
                parts.append({"text": turn.text})
            parts.extend(self._attachment_part(a) for a in turn.attachments)
            return {"role": "user", "parts": parts}
        if turn.role is Role.ASSISTANT:
            return {"role": "model", "parts": [{"text": turn.text}]}
        if turn.role is Role.TOOL_CALL and turn.tool_call is not None:
            parts = []
            if turn.text:
                parts.append({"text": turn.text})
            part: dict[str, Any] = {
                "functionCall": {
                    "name": turn.tool_call.tool_id,
                    "args": turn.tool_call.parameters,
                }
            }
            if turn.tool_call.thought_signature:
                part["thoughtSignature"] = turn.tool_call.thought_signature
            parts.append(part)
            return {"role": "model", "parts": parts}
        if turn.role is Role.TOOL_RESPONSE:
            name = names.get(turn.tool_response_call_id or "", "")
            return {
                "role": "function",
                "parts": [{
                    "functionResponse": {
                        "name": name,
                        "response": {"result": tool_response_text(turn)},
                    }
                }],
            }
        return None

    @staticmethod
    def _attachment_part(attachment: Attachment) -> dict[str, Any]:
        uri = attachment.remote_ids.get("google")
        if uri:
            return {"file_data": {"mime_type": attachment.mime_type, "file_uri": uri}}
        return {"inline_data": {"mime_type": attachment.mime_type, "data": attachment.base64_data()}}
