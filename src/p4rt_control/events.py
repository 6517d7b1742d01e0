"""
Domain events emitted by the P4Runtime client.

Events are pushed to an event sink injected at construction time. The client
keeps no history of the events it has posted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from .messages import PacketIn

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Kinds of events a device session can produce."""

    PERMISSION_DENIED = "permission_denied"  # Mastership lost
    CHANNEL_ERROR = "channel_error"  # Channel may need re-establishment
    CHANNEL_RECONNECTED = "channel_reconnected"
    PACKET_IN = "packet_in"


@dataclass(frozen=True)
class EventSubject:
    """Subject of an event: the device it concerns."""

    device_id: str


@dataclass(frozen=True)
class PacketInSubject(EventSubject):
    """Packet received from a device.

    ``metadata`` maps metadata names to values when the device's pipeconf
    is known, and metadata ids (as strings) otherwise.
    """

    packet: PacketIn | None = None
    metadata: dict[str, bytes] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class DomainEvent:
    type: EventType
    subject: EventSubject
    timestamp: float = field(default_factory=time.time, compare=False)

    @property
    def device_id(self) -> str:
        return self.subject.device_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "device_id": self.device_id,
            "timestamp": self.timestamp,
        }


@runtime_checkable
class EventSink(Protocol):
    """Receives events from client sessions."""

    def post_event(self, event: DomainEvent) -> None: ...


class QueueEventSink:
    """Event sink backed by an asyncio queue.

    Events are dropped (and logged) when the queue is bounded and full, so
    posting never blocks a session.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self.queue: asyncio.Queue[DomainEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def post_event(self, event: DomainEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Event queue full, dropping %s event for %s", event.type, event.device_id)

    async def get(self) -> DomainEvent:
        return await self.queue.get()

    def drain(self) -> list[DomainEvent]:
        """Return all queued events without waiting."""
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events
