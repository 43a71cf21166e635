"""Inbound events and event sources

External transports (a Solace/JMS subscriber, a Kafka consumer) plug in by
implementing ``EventSource``: any async iterable of InboundEvent.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional, Protocol

from ..orchestrator.exceptions import MalformedEventError


@dataclass(frozen=True)
class InboundEvent:
    topic: str
    payload: Any
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> 'InboundEvent':
        """Build from a ``{topic, payload}`` transport message."""
        if not isinstance(message, dict) or not isinstance(message.get("topic"), str):
            raise MalformedEventError("event message has no topic")
        return cls(topic=message["topic"], payload=message.get("payload"))


class EventSource(Protocol):
    def __aiter__(self) -> AsyncIterator[InboundEvent]:
        ...


_CLOSED = object()


class QueueEventSource:
    """In-process source backed by an asyncio.Queue.

    Iteration ends after ``close()`` once queued events are drained.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    async def put(self, topic: str, payload: Any, received_at: Optional[datetime] = None):
        event = InboundEvent(topic, payload, received_at or datetime.now(timezone.utc))
        await self._queue.put(event)

    async def put_event(self, event: InboundEvent):
        await self._queue.put(event)

    async def close(self):
        await self._queue.put(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[InboundEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
