"""Server-Sent-Events line parser.

Reads an async iterator of text lines (``httpx.Response.aiter_lines()``)
and hands each JSON payload to a :class:`StreamHandler`.  Two layouts are
supported by the same parser:

- data-only streams, where the event type (if any) lives inside the JSON
  payload under ``type_field``;
- ``event:``/``data:`` pairs, where the preceding ``event:`` line tags the
  next payload.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol

_logger = logging.getLogger(__name__)

_DATA_PREFIX = "data:"
_EVENT_PREFIX = "event:"

# Errors a handler may raise on a chunk whose shape it did not expect.
_MALFORMED_CHUNK_ERRORS = (KeyError, IndexError, TypeError, AttributeError, ValueError)


class ActionKind(enum.Enum):
    CONTINUE = "continue"
    STOP = "stop"
    ERROR = "error"


@dataclass(frozen=True)
class StreamAction:
    """What the parser should do after a handler consumed an event."""

    kind: ActionKind
    message: str = ""

    @classmethod
    def error(cls, message: str) -> StreamAction:
        return cls(ActionKind.ERROR, message)


CONTINUE = StreamAction(ActionKind.CONTINUE)
STOP = StreamAction(ActionKind.STOP)


@dataclass(frozen=True)
class StreamResult:
    """How a parse run ended."""

    ok: bool
    error: str = ""


class StreamHandler(Protocol):
    def on_event(self, event_type: str | None, data: dict[str, Any]) -> StreamAction: ...

    def on_stream_end(self) -> None: ...

    def on_parse_error(self, line: str, error: Exception) -> None: ...


class SSEParser:
    """Drive a :class:`StreamHandler` from SSE lines.

    Parameters
    ----------
    type_field:
        JSON key holding the event type for data-only streams.  ``None``
        means the payload carries no type and handlers branch on structure.
    done_marker:
        Payload that ends the stream successfully (``[DONE]``).
    skip_keepalives:
        Silently drop ``:`` comment lines sent by relays as keepalives.
    stop_events:
        ``event:`` names that end the stream without reading their payload.
    """

    def __init__(
        self,
        *,
        type_field: str | None = "type",
        done_marker: str = "[DONE]",
        skip_keepalives: bool = False,
        stop_events: frozenset[str] = frozenset(),
    ) -> None:
        self.type_field = type_field
        self.done_marker = done_marker
        self.skip_keepalives = skip_keepalives
        self.stop_events = stop_events

    async def parse(self, lines: AsyncIterator[str], handler: StreamHandler) -> StreamResult:
        """Consume *lines* until end of stream or a handler stop/error."""
        event_type: str | None = None

        async for raw_line in lines:
            line = raw_line.strip()
            if not line:
                # Blank line terminates an SSE event block.
                event_type = None
                continue

            if line.startswith(":"):
                if not self.skip_keepalives:
                    _logger.debug("Ignoring SSE comment line: %s", line)
                continue

            if line == self.done_marker:
                handler.on_stream_end()
                return StreamResult(ok=True)

            if line.startswith(_EVENT_PREFIX):
                event_type = line[len(_EVENT_PREFIX):].strip() or None
                if event_type in self.stop_events:
                    handler.on_stream_end()
                    return StreamResult(ok=True)
                continue

            if not line.startswith(_DATA_PREFIX):
                continue

            payload = line[len(_DATA_PREFIX):].strip()
            if not payload or payload == "{}":
                continue
            if payload == self.done_marker:
                handler.on_stream_end()
                return StreamResult(ok=True)

            try:
                data = json.loads(payload)
            except json.JSONDecodeError as e:
                handler.on_parse_error(line, e)
                continue
            if not isinstance(data, dict):
                handler.on_parse_error(line, ValueError("payload is not a JSON object"))
                continue

            kind = event_type
            if self.type_field is not None and isinstance(data.get(self.type_field), str):
                kind = data[self.type_field]

            try:
                action = handler.on_event(kind, data)
            except _MALFORMED_CHUNK_ERRORS as e:
                handler.on_parse_error(line, e)
                continue

            if action.kind is ActionKind.STOP:
                return StreamResult(ok=True)
            if action.kind is ActionKind.ERROR:
                return StreamResult(ok=False, error=action.message)

        handler.on_stream_end()
        return StreamResult(ok=True)
