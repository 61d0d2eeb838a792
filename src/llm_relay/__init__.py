"""llm-relay: one streaming protocol over many chat-completion providers."""

from llm_relay.config import ProviderSpec, RelayConfig, load_config
from llm_relay.core.loop import MAX_TOOL_DEPTH, ToolCallingLoop
from llm_relay.core.supervisor import RequestSupervisor
from llm_relay.events.bus import EventBus
from llm_relay.tools import Tool, ToolRegistry
from llm_relay.types import (
    Attachment,
    ConversationTurn,
    EventType,
    RequestStatus,
    StreamEvent,
    StreamOutcome,
    ThinkingBudget,
    ToolCall,
    ToolExecutionResult,
)

__version__ = "0.1.0"

__all__ = [
    "MAX_TOOL_DEPTH",
    "Attachment",
    "ConversationTurn",
    "EventBus",
    "EventType",
    "ProviderSpec",
    "RelayConfig",
    "RequestStatus",
    "RequestSupervisor",
    "StreamEvent",
    "StreamOutcome",
    "ThinkingBudget",
    "Tool",
    "ToolCall",
    "ToolCallingLoop",
    "ToolExecutionResult",
    "ToolRegistry",
    "load_config",
]
