"""Shared data types for llm-relay."""

from __future__ import annotations

import base64
import enum
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Conversation types
# ---------------------------------------------------------------------------

class Role(str, enum.Enum):
    """Role of a conversation turn."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL_CALL = "tool_call"
    TOOL_RESPONSE = "tool_response"


@dataclass(frozen=True)
class Attachment:
    """A file attached to a user turn.

    ``remote_ids`` maps a provider tag to an id or URI the provider already
    holds for this file (OpenAI file id, Gemini file URI, Poe URL).  When a
    provider has no entry the bytes are sent inline.
    """

    file_name: str
    mime_type: str
    path: str | None = None
    data: bytes | None = None
    remote_ids: dict[str, str] = field(default_factory=dict)

    def read_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.path is None:
            raise ValueError(f"Attachment {self.file_name} has neither data nor path")
        return Path(self.path).read_bytes()

    def base64_data(self) -> str:
        return base64.b64encode(self.read_bytes()).decode("ascii")

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == "application/pdf"

    @property
    def is_text(self) -> bool:
        return self.mime_type.startswith("text/")


@dataclass(frozen=True)
class ToolCall:
    """A completed tool call requested by the model."""

    id: str
    tool_id: str
    parameters: dict[str, Any]
    provider: str = ""
    # Opaque continuity token (Gemini thoughtSignature) echoed back verbatim.
    thought_signature: str | None = None


@dataclass(frozen=True)
class ToolExecutionResult:
    """Outcome of running a tool."""

    success: bool
    output: str = ""
    error: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, output: str, details: dict[str, Any] | None = None) -> ToolExecutionResult:
        return cls(success=True, output=output, details=details or {})

    @classmethod
    def failure(cls, error: str, details: dict[str, Any] | None = None) -> ToolExecutionResult:
        return cls(success=False, error=error, details=details or {})

    def to_message(self) -> str:
        """Text fed back to the model as the tool response."""
        if self.success:
            return self.output
        return f"Error: {self.error}"


@dataclass(frozen=True)
class ConversationTurn:
    """One message in a conversation history.

    ``tool_call`` turns carry the call, its result and any assistant text
    that preceded the call.  ``tool_response`` turns carry the textual
    result under ``tool_response_call_id``.
    """

    role: Role
    text: str = ""
    attachments: tuple[Attachment, ...] = ()
    tool_call: ToolCall | None = None
    tool_call_id: str | None = None
    tool_result: ToolExecutionResult | None = None
    tool_response_call_id: str | None = None
    thoughts: str | None = None
    model: str | None = None

    @classmethod
    def user(cls, text: str, attachments: list[Attachment] | tuple[Attachment, ...] = ()) -> ConversationTurn:
        return cls(role=Role.USER, text=text, attachments=tuple(attachments))

    @classmethod
    def assistant(
        cls, text: str, model: str | None = None, thoughts: str | None = None
    ) -> ConversationTurn:
        return cls(role=Role.ASSISTANT, text=text, model=model, thoughts=thoughts)


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # string, integer, number, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


@dataclass(frozen=True)
class ToolSpec:
    """Provider-neutral description of a tool offered to the model.

    ``parameters`` is a JSON-schema object (``{"type": "object", ...}``).
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    @property
    def properties(self) -> dict[str, Any]:
        return self.parameters.get("properties", {})

    @property
    def required(self) -> list[str]:
        return list(self.parameters.get("required", []))


# ---------------------------------------------------------------------------
# Thinking / reasoning
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ThinkingBudget:
    """Reasoning budget requested from the provider.

    Either an effort level (``"low"``, ``"medium"``, ``"high"``, ...) or a
    token count.  The default asks for no reasoning configuration at all.
    """

    effort: str | None = None
    tokens: int | None = None

    @property
    def is_set(self) -> bool:
        if self.tokens is not None:
            return self.tokens > 0
        return bool(self.effort) and self.effort != "none"


class ThoughtsStatus(enum.Enum):
    NONE = "none"
    PRESENT = "present"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class ThinkingInfo:
    """Reasoning collected during one provider call."""

    thoughts: str | None = None
    duration_seconds: float | None = None
    status: ThoughtsStatus = ThoughtsStatus.NONE


# ---------------------------------------------------------------------------
# Provider call result
# ---------------------------------------------------------------------------

class OutcomeKind(enum.Enum):
    TEXT_COMPLETE = "text_complete"
    TOOL_CALL_DETECTED = "tool_call_detected"
    ERROR = "error"


@dataclass(frozen=True)
class StreamOutcome:
    """Terminal result of one provider call."""

    kind: OutcomeKind
    text: str = ""
    tool_call: ToolCall | None = None
    message: str = ""
    thinking: ThinkingInfo = field(default_factory=ThinkingInfo)

    @classmethod
    def text_complete(cls, text: str, thinking: ThinkingInfo | None = None) -> StreamOutcome:
        return cls(OutcomeKind.TEXT_COMPLETE, text=text, thinking=thinking or ThinkingInfo())

    @classmethod
    def tool_call_detected(
        cls,
        call: ToolCall,
        preceding_text: str = "",
        thinking: ThinkingInfo | None = None,
    ) -> StreamOutcome:
        return cls(
            OutcomeKind.TOOL_CALL_DETECTED,
            text=preceding_text,
            tool_call=call,
            thinking=thinking or ThinkingInfo(),
        )

    @classmethod
    def failed(cls, message: str) -> StreamOutcome:
        return cls(OutcomeKind.ERROR, message=message)

    @property
    def preceding_text(self) -> str:
        return self.text

    @property
    def is_error(self) -> bool:
        return self.kind is OutcomeKind.ERROR


@dataclass
class ChatRequest:
    """Everything an adapter needs to issue one provider call."""

    model: str
    history: list[ConversationTurn]
    system_prompt: str = ""
    tools: list[ToolSpec] = field(default_factory=list)
    thinking: ThinkingBudget = field(default_factory=ThinkingBudget)
    temperature: float | None = None
    web_search: bool = False


# ---------------------------------------------------------------------------
# Supervisor types
# ---------------------------------------------------------------------------

class RequestStatus(enum.Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.COMPLETED, RequestStatus.FAILED, RequestStatus.CANCELLED)


@dataclass
class RequestRecord:
    """One orchestrated conversation tracked by the supervisor."""

    chat_id: str
    provider: str
    model: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: RequestStatus = RequestStatus.PENDING
    accumulated_text: str = ""
    created_at: float = field(default_factory=time.time)


class EventType(enum.Enum):
    """Event types broadcast by the supervisor."""

    PARTIAL_RESPONSE = "response.partial"
    THINKING_STARTED = "thinking.started"
    THINKING_PARTIAL = "thinking.partial"
    THINKING_COMPLETE = "thinking.complete"
    TOOL_CALL_REQUEST = "tool.call_request"
    MESSAGES_ADDED = "messages.added"
    COMPLETE = "request.complete"
    ERROR = "request.error"
    STATUS_CHANGE = "request.status"


@dataclass(frozen=True)
class StreamEvent:
    """Event emitted by the supervisor via the EventBus."""

    type: EventType
    request_id: str
    chat_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
