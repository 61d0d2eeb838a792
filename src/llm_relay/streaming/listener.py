"""Side-effect sink for content observed while a stream is being read."""

from __future__ import annotations

from llm_relay.types import ThinkingInfo


class StreamListener:
    """Receives text and reasoning as it arrives.

    The default implementation ignores everything; the tool loop callbacks
    extend it.
    """

    def on_partial_response(self, text: str) -> None:
        pass

    def on_thinking_started(self) -> None:
        pass

    def on_thinking_partial(self, text: str) -> None:
        pass

    def on_thinking_complete(self, info: ThinkingInfo) -> None:
        pass
