"""Tool-calling loop.

Drives one adapter until the model produces a final answer, an error, or
the depth limit is hit.  Each tool round appends a ``tool_call`` and a
``tool_response`` turn to the history before the next provider call.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, replace

from llm_relay.providers.base import ProviderAdapter
from llm_relay.streaming.listener import StreamListener
from llm_relay.types import (
    ChatRequest,
    ConversationTurn,
    OutcomeKind,
    Role,
    ThinkingInfo,
    ToolCall,
    ToolExecutionResult,
)

_logger = logging.getLogger(__name__)

MAX_TOOL_DEPTH = 25


class LoopState(enum.Enum):
    ITERATING = "iterating"
    DONE = "done"
    FAILED = "failed"
    DEPTH_EXCEEDED = "depth_exceeded"


@dataclass
class LoopResult:
    """Terminal state of a loop run."""

    state: LoopState
    text: str = ""
    message: str = ""
    thinking: ThinkingInfo = field(default_factory=ThinkingInfo)
    history: list[ConversationTurn] = field(default_factory=list)
    provider_calls: int = 0

    @property
    def ok(self) -> bool:
        return self.state is LoopState.DONE


class LoopCallbacks(StreamListener):
    """Hooks the loop calls between provider calls.

    The loop never runs tools itself; :meth:`execute_tool` decides how.
    """

    def on_iteration_started(self, depth: int) -> None:
        pass

    async def execute_tool(self, call: ToolCall, preceding_text: str) -> ToolExecutionResult:
        return ToolExecutionResult.failure(f"No executor available for tool {call.tool_id}")

    def on_turns_added(self, turns: list[ConversationTurn]) -> None:
        pass


def tool_round_turns(
    call: ToolCall,
    preceding_text: str,
    result: ToolExecutionResult,
    thoughts: str | None = None,
) -> list[ConversationTurn]:
    """Build the ``tool_call``/``tool_response`` pair for one tool round.

    *thoughts* is the reasoning of the provider call that requested the tool.
    """
    return [
        ConversationTurn(
            role=Role.TOOL_CALL,
            text=preceding_text,
            tool_call=call,
            tool_call_id=call.id,
            tool_result=result,
            thoughts=thoughts,
        ),
        ConversationTurn(
            role=Role.TOOL_RESPONSE,
            text=result.to_message(),
            tool_result=result,
            tool_response_call_id=call.id,
        ),
    ]


class ToolCallingLoop:
    """Run provider calls until a final answer.

    Parameters
    ----------
    adapter:
        The provider adapter invoked once per iteration.
    max_depth:
        Hard limit on provider calls for one top-level request.
    """

    def __init__(self, adapter: ProviderAdapter, max_depth: int = MAX_TOOL_DEPTH) -> None:
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        self.adapter = adapter
        self.max_depth = max_depth
        self.state = LoopState.ITERATING

    async def run(self, request: ChatRequest, callbacks: LoopCallbacks | None = None) -> LoopResult:
        callbacks = callbacks or LoopCallbacks()
        self.state = LoopState.ITERATING
        history = list(request.history)
        thinking = ThinkingInfo()

        for depth in range(self.max_depth):
            callbacks.on_iteration_started(depth)
            outcome = await self.adapter.stream(replace(request, history=list(history)), callbacks)
            thinking = outcome.thinking

            if outcome.kind is OutcomeKind.TEXT_COMPLETE:
                self.state = LoopState.DONE
                return LoopResult(
                    self.state, text=outcome.text, thinking=thinking,
                    history=history, provider_calls=depth + 1,
                )
            if outcome.kind is OutcomeKind.ERROR or outcome.tool_call is None:
                self.state = LoopState.FAILED
                return LoopResult(
                    self.state, message=outcome.message or "Provider call failed",
                    history=history, provider_calls=depth + 1,
                )

            call = outcome.tool_call
            _logger.info(
                "Tool round %d/%d: %s (%s)", depth + 1, self.max_depth, call.tool_id, call.id
            )
            result = await callbacks.execute_tool(call, outcome.preceding_text)
            turns = tool_round_turns(
                call, outcome.preceding_text, result, outcome.thinking.thoughts
            )
            history.extend(turns)
            callbacks.on_turns_added(turns)

        message = f"Maximum tool calling iterations ({self.max_depth}) reached"
        _logger.warning("%s", message)
        self.state = LoopState.DEPTH_EXCEEDED
        return LoopResult(
            self.state, message=message, thinking=thinking,
            history=history, provider_calls=self.max_depth,
        )
