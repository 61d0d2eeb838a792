"""Bounded broadcast channel for supervisor events.

Publishing never blocks: each subscriber owns a bounded buffer and, when
that buffer is full, the oldest event is discarded to make room.  A slow
observer therefore loses old events instead of stalling the streams that
produce them.  Subscribers only see events published after they
subscribed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque

from llm_relay.types import EventType, StreamEvent

_logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 100


class SubscriptionClosed(Exception):
    """Raised by :meth:`Subscription.get` once closed and drained."""


class Subscription:
    """One observer's view of the bus.

    Iterate with ``async for``; iteration ends after :meth:`close` once the
    buffer is drained.
    """

    def __init__(
        self,
        bus: EventBus,
        event_types: frozenset[EventType] | None,
        buffer_size: int,
    ) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        self._bus = bus
        self._event_types = event_types
        self._buffer: deque[StreamEvent] = deque()
        self._buffer_size = buffer_size
        self._ready = asyncio.Event()
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._buffer)

    def matches(self, event: StreamEvent) -> bool:
        return self._event_types is None or event.type in self._event_types

    def _push(self, event: StreamEvent) -> None:
        if self._closed:
            return
        if len(self._buffer) >= self._buffer_size:
            self._buffer.popleft()
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                _logger.warning("Slow subscriber: %d events dropped", self.dropped)
        self._buffer.append(event)
        self._ready.set()

    def get_nowait(self) -> StreamEvent | None:
        """Return the next buffered event, or *None* if there is none."""
        if self._buffer:
            return self._buffer.popleft()
        return None

    def drain(self) -> list[StreamEvent]:
        """Return and clear everything buffered."""
        events = list(self._buffer)
        self._buffer.clear()
        return events

    async def get(self) -> StreamEvent:
        """Wait for the next event.

        Raises
        ------
        SubscriptionClosed
            If the subscription is closed and nothing is buffered.
        """
        while not self._buffer:
            if self._closed:
                raise SubscriptionClosed
            self._ready.clear()
            await self._ready.wait()
        return self._buffer.popleft()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._ready.set()
        self._bus.unsubscribe(self)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> StreamEvent:
        try:
            return await self.get()
        except SubscriptionClosed:
            raise StopAsyncIteration from None

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class EventBus:
    """Fan-out of :class:`StreamEvent` objects to any number of subscribers."""

    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        self.buffer_size = buffer_size
        self._subscriptions: list[Subscription] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def subscribe(
        self,
        *event_types: EventType,
        buffer_size: int | None = None,
    ) -> Subscription:
        """Start receiving events (all types when none are given)."""
        sub = Subscription(
            self,
            frozenset(event_types) if event_types else None,
            buffer_size or self.buffer_size,
        )
        self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass
        subscription.close()

    def publish(self, event: StreamEvent) -> None:
        """Deliver *event* to every matching subscriber without blocking."""
        for sub in list(self._subscriptions):
            if sub.matches(event):
                sub._push(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def close(self) -> None:
        """Close every subscription."""
        for sub in list(self._subscriptions):
            sub.close()
        self._subscriptions.clear()
