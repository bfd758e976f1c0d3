"""
Streaming Protocol Adapter

The orchestrator publishes internal turn events onto an EventChannel; the
adapter consumes the channel in order and projects each event onto its wire
form. A channel accepts exactly one terminal event (done or error) and
nothing after it, so the wire stream always ends with that event.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal, Union


@dataclass(frozen=True)
class ChunkEvent:
    content: str


@dataclass(frozen=True)
class ToolCallEvent:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultEvent:
    id: str
    name: str
    status: Literal["executed", "failed"]
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None


@dataclass(frozen=True)
class DoneEvent:
    iterations: int = 0
    usage: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorEvent:
    code: str
    message: str


TurnEvent = Union[ChunkEvent, ToolCallEvent, ToolResultEvent, DoneEvent, ErrorEvent]
TERMINAL_EVENTS = (DoneEvent, ErrorEvent)


def is_terminal(event: TurnEvent) -> bool:
    return isinstance(event, TERMINAL_EVENTS)


class ChannelClosedError(RuntimeError):
    """Raised when publishing after the terminal event."""


class EventChannel:
    """Ordered single-producer single-consumer event queue for one turn."""

    def __init__(self):
        self._queue: asyncio.Queue[TurnEvent] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: TurnEvent) -> None:
        if self._closed:
            raise ChannelClosedError(f"Channel closed; dropped {type(event).__name__}")
        self._queue.put_nowait(event)
        if is_terminal(event):
            self._closed = True

    async def __aiter__(self) -> AsyncIterator[TurnEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if is_terminal(event):
                return


def to_wire(event: TurnEvent) -> dict[str, Any]:
    """Project an internal event onto its wire JSON object."""
    if isinstance(event, ChunkEvent):
        return {"type": "chunk", "content": event.content}
    if isinstance(event, ToolCallEvent):
        return {"type": "tool_call", "id": event.id, "name": event.name, "arguments": event.arguments}
    if isinstance(event, ToolResultEvent):
        wire: dict[str, Any] = {"type": "tool_result", "id": event.id, "name": event.name, "status": event.status}
        if event.status == "executed":
            wire["result"] = event.result
        else:
            wire["error"] = event.error
        return wire
    if isinstance(event, DoneEvent):
        return {"type": "done", "iterations": event.iterations, "usage": dict(event.usage)}
    if isinstance(event, ErrorEvent):
        return {"type": "error", "message": event.message, "code": event.code}
    raise TypeError(f"Unknown turn event: {event!r}")


async def wire_events(channel: EventChannel) -> AsyncIterator[dict[str, Any]]:
    async for event in channel:
        yield to_wire(event)


def to_sse(wire: dict[str, Any]) -> dict[str, str]:
    """One wire event per SSE data frame."""
    return {"data": json.dumps(wire, ensure_ascii=False, default=str)}


__all__ = [
    "ChannelClosedError",
    "ChunkEvent",
    "DoneEvent",
    "ErrorEvent",
    "EventChannel",
    "ToolCallEvent",
    "ToolResultEvent",
    "TurnEvent",
    "is_terminal",
    "to_sse",
    "to_wire",
    "wire_events",
]
