"""Request supervisor.

Runs any number of conversations concurrently, each in its own task owned
by the supervisor rather than by whoever called :meth:`RequestSupervisor.start`.
Everything observable about a request is published on the supervisor's
:class:`~llm_relay.events.bus.EventBus`.

Tools are never executed here.  When the model asks for one, a
``TOOL_CALL_REQUEST`` event is published and the request waits (bounded by
``tool_timeout``) until the caller hands back a result through
:meth:`RequestSupervisor.provide_tool_result`.

All public methods must be called from the event loop the supervisor's
tasks run on.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace
from typing import Any, Iterable

import httpx

from llm_relay.config import ProviderSpec, RelayConfig
from llm_relay.core.loop import LoopCallbacks, LoopResult, ToolCallingLoop
from llm_relay.errors import RequestConflictError
from llm_relay.events.bus import EventBus, Subscription
from llm_relay.providers import ProviderAdapter, create_adapter
from llm_relay.tools.registry import ToolRegistry
from llm_relay.types import (
    Attachment,
    ChatRequest,
    ConversationTurn,
    EventType,
    RequestRecord,
    RequestStatus,
    StreamEvent,
    ThinkingBudget,
    ThinkingInfo,
    ToolCall,
    ToolExecutionResult,
    ToolSpec,
)

_logger = logging.getLogger(__name__)

PROJECT_FILES_PROMPT = (
    "General files belonging to the project of which this conversation is a part are attached:"
)


def thinking_payload(info: ThinkingInfo) -> dict[str, Any]:
    return {
        "thoughts": info.thoughts,
        "duration_seconds": info.duration_seconds,
        "status": info.status,
    }


class _RequestCallbacks(LoopCallbacks):
    """Routes one request's loop activity into supervisor events."""

    def __init__(self, supervisor: RequestSupervisor, record: RequestRecord) -> None:
        self._supervisor = supervisor
        self._record = record

    def on_iteration_started(self, depth: int) -> None:
        self._record.accumulated_text = ""

    def on_partial_response(self, text: str) -> None:
        self._record.accumulated_text += text
        self._supervisor._emit(EventType.PARTIAL_RESPONSE, self._record, text=text)

    def on_thinking_started(self) -> None:
        self._supervisor._emit(EventType.THINKING_STARTED, self._record)

    def on_thinking_partial(self, text: str) -> None:
        self._supervisor._emit(EventType.THINKING_PARTIAL, self._record, text=text)

    def on_thinking_complete(self, info: ThinkingInfo) -> None:
        self._supervisor._emit(EventType.THINKING_COMPLETE, self._record, **thinking_payload(info))

    async def execute_tool(self, call: ToolCall, preceding_text: str) -> ToolExecutionResult:
        return await self._supervisor._await_tool_result(self._record, call, preceding_text)

    def on_turns_added(self, turns: list[ConversationTurn]) -> None:
        self._supervisor._emit(EventType.MESSAGES_ADDED, self._record, turns=list(turns))


class RequestSupervisor:
    """Owns every in-flight request.

    Parameters
    ----------
    config:
        Provider settings and limits.  Defaults to :class:`RelayConfig`.
    registry:
        Tools that may be enabled by name in :meth:`start`.
    bus:
        Broadcast channel; one is created from ``config.event_buffer``
        when omitted.
    client:
        Shared HTTP client.  When omitted the supervisor creates one and
        closes it in :meth:`aclose`.
    """

    def __init__(
        self,
        config: RelayConfig | None = None,
        registry: ToolRegistry | None = None,
        *,
        bus: EventBus | None = None,
        client: httpx.AsyncClient | None = None,
        tool_timeout: float | None = None,
        max_tool_depth: int | None = None,
    ) -> None:
        self.config = config or RelayConfig()
        self.registry = registry or ToolRegistry()
        self.bus = bus or EventBus(self.config.event_buffer)
        self.tool_timeout = self.config.tool_timeout if tool_timeout is None else tool_timeout
        self.max_tool_depth = (
            self.config.max_tool_depth if max_tool_depth is None else max_tool_depth
        )
        self._client = client
        self._owns_client = client is None

        self._records: dict[str, RequestRecord] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._pending_tool_results: dict[str, asyncio.Future[ToolExecutionResult]] = {}
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.config.read_timeout, connect=self.config.connect_timeout
                ),
            )
        return self._client

    @property
    def active_count(self) -> int:
        return len(self._records)

    def active_requests(self) -> list[RequestRecord]:
        """Snapshot of the active request records."""
        return [replace(r) for r in self._records.values()]

    def get(self, request_id: str) -> RequestRecord | None:
        record = self._records.get(request_id)
        return replace(record) if record is not None else None

    def is_active(self, request_id: str) -> bool:
        return request_id in self._records

    def subscribe(self, *event_types: EventType, buffer_size: int | None = None) -> Subscription:
        return self.bus.subscribe(*event_types, buffer_size=buffer_size)

    async def wait_idle(self) -> None:
        """Wait until no request is active."""
        await self._idle.wait()

    # ------------------------------------------------------------------
    # Inbound operations
    # ------------------------------------------------------------------

    def start(
        self,
        *,
        chat_id: str,
        provider: str | ProviderSpec,
        model: str,
        history: Iterable[ConversationTurn],
        system_prompt: str = "",
        attachments: Iterable[Attachment] = (),
        tools: Iterable[str | ToolSpec] = (),
        thinking: ThinkingBudget | None = None,
        temperature: float | None = None,
        web_search: bool = False,
        request_id: str | None = None,
    ) -> str:
        """Begin streaming a conversation and return its request id.

        Must be called with a running event loop.  Configuration mistakes
        (unknown provider, missing key, duplicate id) raise before any
        task is started; everything after that is reported as events.
        """
        request_id = request_id or uuid.uuid4().hex
        if request_id in self._records:
            raise RequestConflictError(request_id)

        if isinstance(provider, ProviderSpec):
            spec, provider_name = provider, provider.kind
        else:
            spec, provider_name = self.config.provider(provider), provider
        adapter = create_adapter(spec, self.http_client)

        turns = list(history)
        attachments = tuple(attachments)
        if attachments:
            turns.insert(0, ConversationTurn.user(PROJECT_FILES_PROMPT, attachments))

        request = ChatRequest(
            model=model,
            history=turns,
            system_prompt=system_prompt,
            tools=self._resolve_tools(tools),
            thinking=thinking or ThinkingBudget(),
            temperature=temperature,
            web_search=web_search,
        )
        record = RequestRecord(
            chat_id=chat_id, provider=provider_name, model=model, request_id=request_id
        )
        self._records[request_id] = record
        self._idle.clear()
        _logger.info(
            "Starting request %s (chat=%s provider=%s model=%s)",
            request_id, chat_id, provider_name, model,
        )

        self._set_status(record, RequestStatus.STREAMING)
        task = asyncio.get_running_loop().create_task(
            self._run(record, adapter, request), name=f"llm-relay-{request_id}"
        )
        self._tasks[request_id] = task
        return request_id

    def provide_tool_result(self, request_id: str, result: ToolExecutionResult) -> bool:
        """Fulfil the pending tool call of *request_id*.

        Returns *False* when nothing is waiting (unknown id, already
        resolved, or timed out).
        """
        future = self._pending_tool_results.pop(request_id, None)
        if future is None or future.done():
            _logger.warning("No pending tool call for request %s", request_id)
            return False
        future.set_result(result)
        return True

    def cancel(self, request_id: str) -> bool:
        """Cancel a request and publish ``STATUS_CHANGE(CANCELLED)``."""
        record = self._stop(request_id)
        if record is None:
            return False
        self._set_status(record, RequestStatus.CANCELLED)
        return True

    def stop_and_keep_partial(self, request_id: str) -> str | None:
        """Cancel a request without publishing anything.

        Returns the text streamed by the current provider call so the
        caller can persist it, or *None* for an unknown id.
        """
        record = self._stop(request_id)
        if record is None:
            return None
        return record.accumulated_text

    async def aclose(self) -> None:
        """Cancel every request, wait for the tasks and release the HTTP client."""
        tasks = list(self._tasks.values())
        for request_id in list(self._records):
            self.cancel(request_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_tools(self, tools: Iterable[str | ToolSpec]) -> list[ToolSpec]:
        specs: list[ToolSpec] = []
        names: list[str] = []
        for tool in tools:
            if isinstance(tool, ToolSpec):
                specs.append(tool)
            else:
                names.append(tool)
        if names:
            specs.extend(self.registry.specs(names))
        return specs

    async def _run(
        self, record: RequestRecord, adapter: ProviderAdapter, request: ChatRequest
    ) -> None:
        loop = ToolCallingLoop(adapter, self.max_tool_depth)
        try:
            result = await loop.run(request, _RequestCallbacks(self, record))
        except asyncio.CancelledError:
            _logger.info("Request %s cancelled", record.request_id)
            raise
        except Exception as e:
            _logger.exception("Request %s failed", record.request_id)
            self._finish_failed(record, f"Exception: {e}")
        else:
            if result.ok:
                self._finish_completed(record, result)
            else:
                self._finish_failed(record, result.message)
        finally:
            self._cleanup(record)

    async def _await_tool_result(
        self, record: RequestRecord, call: ToolCall, preceding_text: str
    ) -> ToolExecutionResult:
        future: asyncio.Future[ToolExecutionResult] = asyncio.get_running_loop().create_future()
        self._pending_tool_results[record.request_id] = future
        self._emit(
            EventType.TOOL_CALL_REQUEST,
            record,
            tool_call=call,
            preceding_text=preceding_text,
            display_name=self.registry.display_name(call.tool_id),
        )
        try:
            return await asyncio.wait_for(future, self.tool_timeout)
        except asyncio.TimeoutError:
            _logger.warning(
                "Request %s: no result for tool %s after %.0fs",
                record.request_id, call.tool_id, self.tool_timeout,
            )
            return ToolExecutionResult.failure("Tool execution timed out")
        finally:
            if self._pending_tool_results.get(record.request_id) is future:
                del self._pending_tool_results[record.request_id]

    def _finish_completed(self, record: RequestRecord, result: LoopResult) -> None:
        self._emit(
            EventType.COMPLETE,
            record,
            text=result.text,
            model=record.model,
            thinking=thinking_payload(result.thinking),
        )
        self._set_status(record, RequestStatus.COMPLETED)

    def _finish_failed(self, record: RequestRecord, message: str) -> None:
        _logger.warning("Request %s failed: %s", record.request_id, message)
        self._emit(EventType.ERROR, record, message=message)
        self._set_status(record, RequestStatus.FAILED)

    def _stop(self, request_id: str) -> RequestRecord | None:
        record = self._records.pop(request_id, None)
        task = self._tasks.pop(request_id, None)
        # Cancelled, not resolved: wait_for must not hand a result to a task being cancelled.
        future = self._pending_tool_results.pop(request_id, None)
        if future is not None and not future.done():
            future.cancel()
        if task is not None:
            task.cancel()
        self._update_idle()
        return record

    def _cleanup(self, record: RequestRecord) -> None:
        request_id = record.request_id
        # A cancelled request's id may already belong to a newer request.
        if self._records.get(request_id) is not record:
            return
        del self._records[request_id]
        self._tasks.pop(request_id, None)
        self._update_idle()

    def _update_idle(self) -> None:
        if self._records:
            self._idle.clear()
        else:
            self._idle.set()

    def _set_status(self, record: RequestRecord, status: RequestStatus) -> None:
        record.status = status
        self._emit(EventType.STATUS_CHANGE, record, status=status)

    def _emit(self, event_type: EventType, record: RequestRecord, **data: Any) -> None:
        self.bus.publish(StreamEvent(event_type, record.request_id, record.chat_id, data))
