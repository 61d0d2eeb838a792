"""Provider adapter base class.

An adapter turns a :class:`~llm_relay.types.ChatRequest` into one streaming
HTTP call and hands the response lines to its normalizer.  Provider and
transport failures are returned as ``StreamOutcome`` errors, never raised.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from llm_relay.config import ProviderSpec
from llm_relay.errors import ConfigError, MissingApiKeyError
from llm_relay.streaming.listener import StreamListener
from llm_relay.streaming.normalizer import StreamNormalizer
from llm_relay.streaming.sse import SSEParser
from llm_relay.types import Attachment, ChatRequest, ConversationTurn, Role, StreamOutcome

_logger = logging.getLogger(__name__)


def extract_error_message(body: str) -> str:
    """Pull ``error.message`` (or similar) out of an error body."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return body.strip() or "(empty response body)"
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
        if data.get("message"):
            return str(data["message"])
    return body.strip()


def tool_names_by_call_id(history: list[ConversationTurn]) -> dict[str, str]:
    """Map call ids to tool names for providers that need the name on responses."""
    names: dict[str, str] = {}
    for turn in history:
        if turn.role is Role.TOOL_CALL and turn.tool_call is not None:
            names[turn.tool_call.id] = turn.tool_call.tool_id
    return names


def tool_response_text(turn: ConversationTurn) -> str:
    if turn.text:
        return turn.text
    if turn.tool_result is not None:
        return turn.tool_result.to_message()
    return ""


class ProviderAdapter:
    """Base class for provider adapters.

    Subclasses set the class attributes, implement :meth:`build_body` and,
    where needed, override :meth:`headers`, :meth:`url_for` or
    :meth:`on_http_error`.
    """

    provider = ""
    display_name = ""
    default_url = ""
    normalizer_cls: type[StreamNormalizer] = StreamNormalizer

    def __init__(self, spec: ProviderSpec, client: httpx.AsyncClient) -> None:
        self.spec = spec
        self._client = client
        self.api_key = spec.resolved_api_key
        if not self.api_key:
            raise MissingApiKeyError(self.display_name)
        if not (spec.url or self.default_url):
            raise ConfigError(f"{self.display_name} provider requires a url")

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_body(self, request: ChatRequest) -> dict[str, Any]:
        raise NotImplementedError

    def headers(self) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        headers.update(self.spec.headers)
        return headers

    def url_for(self, request: ChatRequest) -> str:
        url = self.spec.url or self.default_url
        return url.replace("{model}", request.model)

    def parser(self) -> SSEParser:
        return SSEParser()

    def create_normalizer(
        self, request: ChatRequest, listener: StreamListener | None
    ) -> StreamNormalizer:
        return self.normalizer_cls(listener, reasoning_requested=request.thinking.is_set)

    def _finalize_body(self, body: dict[str, Any]) -> dict[str, Any]:
        if self.spec.extra_params:
            body.update(self.spec.extra_params)
        return body

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(
        self, request: ChatRequest, listener: StreamListener | None = None
    ) -> StreamOutcome:
        """Issue one streaming call and return its outcome."""
        # Attachments are read and encoded here; keep that off the event loop.
        try:
            body = await asyncio.to_thread(self.build_body, request)
        except (OSError, ValueError) as e:
            _logger.warning("%s: could not read attachment: %s", self.display_name, e)
            return StreamOutcome.failed(
                f"{self.display_name} request failed: could not read attachment: {e}"
            )
        body = self._finalize_body(body)
        return await self._stream_body(request, body, listener)

    async def _stream_body(
        self,
        request: ChatRequest,
        body: dict[str, Any],
        listener: StreamListener | None,
        normalizer: StreamNormalizer | None = None,
    ) -> StreamOutcome:
        if normalizer is None:
            normalizer = self.create_normalizer(request, listener)
        status = 0
        error_body = ""
        url = self.url_for(request)
        _logger.debug("%s stream request: POST %s model=%s", self.provider, url, request.model)
        try:
            async with self._client.stream(
                "POST", url, json=body, headers=self.headers()
            ) as resp:
                if resp.status_code >= 400:
                    status = resp.status_code
                    error_body = (await resp.aread()).decode("utf-8", errors="replace")
                else:
                    await self.parser().parse(resp.aiter_lines(), normalizer)
        except httpx.HTTPError as e:
            _logger.warning("%s request failed: %s: %s", self.display_name, type(e).__name__, e)
            return StreamOutcome.failed(
                f"{self.display_name} request failed: {type(e).__name__}: {e}"
            )

        if status:
            _logger.warning("%s HTTP %d: %s", self.display_name, status, error_body[:500])
            return await self.on_http_error(request, body, status, error_body, listener)
        return normalizer.outcome()

    async def on_http_error(
        self,
        request: ChatRequest,
        body: dict[str, Any],
        status: int,
        error_body: str,
        listener: StreamListener | None,
    ) -> StreamOutcome:
        return StreamOutcome.failed(self.format_http_error(status, error_body))

    def format_http_error(self, status: int, error_body: str) -> str:
        return f"HTTP {status}: {extract_error_message(error_body)}"


def attachment_as_text(attachment: Attachment) -> str:
    """Inline a text file for providers without native file support."""
    content = attachment.read_bytes().decode("utf-8", errors="replace")
    return f"[File: {attachment.file_name}]\n{content}"
