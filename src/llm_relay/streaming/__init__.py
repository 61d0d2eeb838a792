"""SSE parsing and per-provider stream normalization."""

from llm_relay.streaming.listener import StreamListener
from llm_relay.streaming.normalizer import StreamNormalizer, ThinkingPhase, ToolCallAccumulator
from llm_relay.streaming.sse import CONTINUE, STOP, SSEParser, StreamAction, StreamHandler, StreamResult

__all__ = [
    "CONTINUE",
    "STOP",
    "SSEParser",
    "StreamAction",
    "StreamHandler",
    "StreamListener",
    "StreamNormalizer",
    "StreamResult",
    "ThinkingPhase",
    "ToolCallAccumulator",
]
