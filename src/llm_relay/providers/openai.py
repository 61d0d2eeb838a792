"""OpenAI Responses API adapter.

Streams ``/v1/responses``.  A streaming call rejected with HTTP 400 is
retried once without streaming, since some valid requests are only refused
in streaming mode.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from llm_relay.providers.base import ProviderAdapter, attachment_as_text, tool_response_text
from llm_relay.streaming.listener import StreamListener
from llm_relay.streaming.normalizer import StreamNormalizer
from llm_relay.streaming.sse import CONTINUE, STOP, StreamAction
from llm_relay.types import (
    Attachment,
    ChatRequest,
    ConversationTurn,
    Role,
    StreamOutcome,
    ToolCall,
    ToolSpec,
)

_logger = logging.getLogger(__name__)


def _function_call(item: dict[str, Any]) -> ToolCall | None:
    if item.get("type") != "function_call" or item.get("status", "completed") != "completed":
        return None
    raw_args = item.get("arguments") or "{}"
    try:
        params = json.loads(raw_args)
    except json.JSONDecodeError:
        _logger.warning("OpenAI function_call with unparseable arguments: %s", raw_args[:200])
        return None
    if not isinstance(params, dict) or not item.get("call_id") or not item.get("name"):
        return None
    return ToolCall(id=item["call_id"], tool_id=item["name"], parameters=params, provider="openai")


class OpenAINormalizer(StreamNormalizer):
    """Normalizes Responses API stream events.

    When reasoning was requested but summaries are not available the
    provider sends no reasoning text at all; the thinking phase then opens
    with the first event and closes with status ``UNAVAILABLE``.
    """

    provider = "openai"
    display_name = "OpenAI"

    def __init__(
        self,
        listener: StreamListener | None = None,
        *,
        reasoning_requested: bool = False,
        summaries_available: bool = True,
    ) -> None:
        super().__init__(listener, reasoning_requested=reasoning_requested)
        self._open_thinking_on_first_event = reasoning_requested and not summaries_available

    def on_event(self, event_type: str | None, data: dict[str, Any]) -> StreamAction:
        if self._open_thinking_on_first_event:
            self._open_thinking_on_first_event = False
            self.thinking.start()

        if event_type == "response.output_item.added":
            if (data.get("item") or {}).get("type") == "reasoning":
                self.thinking.start()
        elif event_type == "response.reasoning_summary_text.delta":
            self.emit_reasoning(data.get("delta"))
        elif event_type == "response.output_text.delta":
            self.emit_text(data.get("delta"))
        elif event_type == "response.output_item.done":
            self.detect_tool_call(_function_call(data.get("item") or {}))
        elif event_type == "response.completed":
            if self.tool_call is None:
                for item in (data.get("response") or {}).get("output") or []:
                    call = _function_call(item)
                    if call is not None:
                        self.detect_tool_call(call)
                        break
            self.thinking.close()
            return STOP
        elif event_type == "response.failed":
            error = (data.get("response") or {}).get("error") or {}
            return self.fail(error.get("message") or "OpenAI response failed")
        elif event_type == "error":
            return self.fail(data.get("message") or "Unknown OpenAI streaming error")
        return CONTINUE

    def consume_response(self, data: dict[str, Any]) -> StreamOutcome:
        """Normalize a complete non-streaming response body."""
        for item in data.get("output") or []:
            kind = item.get("type")
            if kind == "reasoning":
                for part in item.get("summary") or []:
                    self.emit_reasoning(part.get("text"))
            elif kind == "message":
                for part in item.get("content") or []:
                    if part.get("type") == "output_text":
                        self.emit_text(part.get("text"))
            elif kind == "function_call":
                self.detect_tool_call(_function_call(item))
        return self.outcome()


class OpenAIAdapter(ProviderAdapter):
    provider = "openai"
    display_name = "OpenAI"
    default_url = "https://api.openai.com/v1/responses"
    normalizer_cls = OpenAINormalizer

    def create_normalizer(
        self, request: ChatRequest, listener: StreamListener | None
    ) -> OpenAINormalizer:
        effort = request.thinking.effort
        return OpenAINormalizer(listener, reasoning_requested=bool(effort and effort != "none"))

    # -- request body -----------------------------------------------------

    def build_body(self, request: ChatRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.model,
            "input": self._input(request),
            "stream": True,
        }
        if request.temperature is not None:
            body["temperature"] = request.temperature
        effort = request.thinking.effort
        if effort and effort != "none":
            body["reasoning"] = {"effort": effort, "summary": "detailed"}
        elif request.thinking.tokens:
            _logger.debug("OpenAI does not accept token budgets; ignoring thinking tokens")

        tools: list[dict[str, Any]] = [self._tool_schema(t) for t in request.tools]
        if request.web_search:
            tools.append({"type": "web_search_preview"})
        if tools:
            body["tools"] = tools
        return body

    @staticmethod
    def _tool_schema(spec: ToolSpec) -> dict[str, Any]:
        parameters = dict(spec.parameters)
        parameters.setdefault("type", "object")
        parameters["additionalProperties"] = False
        # Strict mode requires every property to be listed as required.
        strict = set(spec.required) == set(spec.properties)
        return {
            "type": "function",
            "name": spec.name,
            "description": spec.description,
            "parameters": parameters,
            "strict": strict,
        }

    def _input(self, request: ChatRequest) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        if request.system_prompt:
            items.append({"role": "system", "content": request.system_prompt})
        for turn in request.history:
            items.extend(self._turn_items(turn))
        return items

    def _turn_items(self, turn: ConversationTurn) -> list[dict[str, Any]]:
        if turn.role is Role.USER:
            content: list[dict[str, Any]] = []
            if turn.text:
                content.append({"type": "input_text", "text": turn.text})
            content.extend(self._attachment_part(a) for a in turn.attachments)
            return [{"role": "user", "content": content}]
        if turn.role is Role.ASSISTANT:
            return [{"role": "assistant", "content": turn.text}]
        if turn.role is Role.TOOL_CALL and turn.tool_call is not None:
            items: list[dict[str, Any]] = []
            if turn.text:
                items.append({"role": "assistant", "content": turn.text})
            items.append({
                "type": "function_call",
                "call_id": turn.tool_call.id,
                "name": turn.tool_call.tool_id,
                "arguments": json.dumps(turn.tool_call.parameters),
            })
            return items
        if turn.role is Role.TOOL_RESPONSE:
            return [{
                "type": "function_call_output",
                "call_id": turn.tool_response_call_id,
                "output": tool_response_text(turn),
            }]
        return []

    @staticmethod
    def _attachment_part(attachment: Attachment) -> dict[str, Any]:
        file_id = attachment.remote_ids.get("openai")
        if attachment.is_image:
            if file_id:
                return {"type": "input_image", "file_id": file_id}
            return {
                "type": "input_image",
                "image_url": f"data:{attachment.mime_type};base64,{attachment.base64_data()}",
            }
        if file_id:
            return {"type": "input_file", "file_id": file_id}
        if attachment.is_text:
            return {"type": "input_text", "text": attachment_as_text(attachment)}
        return {
            "type": "input_file",
            "filename": attachment.file_name,
            "file_data": f"data:{attachment.mime_type};base64,{attachment.base64_data()}",
        }

    # -- failure policy ---------------------------------------------------

    async def on_http_error(
        self,
        request: ChatRequest,
        body: dict[str, Any],
        status: int,
        error_body: str,
        listener: StreamListener | None,
    ) -> StreamOutcome:
        if status != 400:
            return await super().on_http_error(request, body, status, error_body, listener)

        reasoning = body.get("reasoning") or {}
        if "summary" in reasoning and "reasoning.summary" in error_body:
            _logger.info("OpenAI rejected reasoning summaries, retrying without them")
            retry = dict(body)
            retry["reasoning"] = {k: v for k, v in reasoning.items() if k != "summary"}
            normalizer = OpenAINormalizer(
                listener, reasoning_requested=True, summaries_available=False
            )
            return await self._stream_body(request, retry, listener, normalizer)

        return await self._non_streaming_fallback(request, body, error_body, listener)

    async def _non_streaming_fallback(
        self,
        request: ChatRequest,
        body: dict[str, Any],
        error_body: str,
        listener: StreamListener | None,
    ) -> StreamOutcome:
        original_error = StreamOutcome.failed(self.format_http_error(400, error_body))
        fallback = {k: v for k, v in body.items() if k != "stream"}
        _logger.info("OpenAI streaming request rejected with 400, retrying without streaming")
        try:
            resp = await self._client.post(
                self.url_for(request), json=fallback, headers=self.headers()
            )
        except httpx.HTTPError as e:
            _logger.warning("OpenAI non-streaming fallback failed: %s: %s", type(e).__name__, e)
            return original_error

        if resp.status_code >= 400:
            _logger.warning("OpenAI non-streaming fallback HTTP %d: %s", resp.status_code, resp.text[:500])
            return original_error
        try:
            data = resp.json()
        except ValueError:
            _logger.warning("OpenAI non-streaming fallback returned invalid JSON")
            return original_error
        if not isinstance(data, dict):
            return original_error

        return self.create_normalizer(request, listener).consume_response(data)
