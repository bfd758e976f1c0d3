"""
Checkpoint Logger - Immutable log of tool executions

Responsibilities:
- Create one checkpoint per executed tool call
- Store it immutably
- Query by conversation_id

Uses:
- Steps panel / debugging of a turn
- Auditing which operations the model actually ran
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Literal, Mapping
from uuid import uuid4

CheckpointStatus = Literal["ok", "error", "timeout"]


@dataclass(frozen=True)
class Checkpoint:
    """Immutable record of one tool execution."""
    checkpoint_id: str
    conversation_id: str
    tool_call_id: str
    tool: str
    input: Mapping[str, Any]
    output: Mapping[str, Any]
    status: CheckpointStatus
    timestamp: str  # ISO-8601
    execution_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkpoint_id": self.checkpoint_id,
            "conversation_id": self.conversation_id,
            "tool_call_id": self.tool_call_id,
            "tool": self.tool,
            "input": dict(self.input),
            "output": dict(self.output),
            "status": self.status,
            "timestamp": self.timestamp,
            "execution_time_ms": self.execution_time_ms,
        }


class CheckpointStorage(ABC):
    """Storage interface for checkpoints."""

    @abstractmethod
    def save(self, checkpoint: Checkpoint) -> None:
        """Persist a checkpoint."""

    @abstractmethod
    def query(self, conversation_id: str) -> list[Checkpoint]:
        """All checkpoints of a conversation, in insertion order."""


class InMemoryCheckpointStorage(CheckpointStorage):
    def __init__(self):
        self._items: dict[str, list[Checkpoint]] = {}
        self._lock = threading.Lock()

    def save(self, checkpoint: Checkpoint) -> None:
        with self._lock:
            self._items.setdefault(checkpoint.conversation_id, []).append(checkpoint)

    def query(self, conversation_id: str) -> list[Checkpoint]:
        with self._lock:
            return list(self._items.get(conversation_id, []))


class CheckpointLogger:
    """Checkpoint logger with pluggable storage (in-memory by default)."""

    def __init__(self, storage: CheckpointStorage | None = None):
        self._storage = storage or InMemoryCheckpointStorage()

    def log(
        self,
        conversation_id: str,
        tool_call_id: str,
        tool: str,
        input_data: dict,
        output_data: dict,
        status: CheckpointStatus,
        execution_time_ms: float = 0.0,
    ) -> str:
        """
        Create and store a checkpoint.

        Returns:
            The generated checkpoint_id
        """
        checkpoint = Checkpoint(
            checkpoint_id=str(uuid4()),
            conversation_id=conversation_id,
            tool_call_id=tool_call_id,
            tool=tool,
            input=MappingProxyType(dict(input_data)),
            output=MappingProxyType(dict(output_data)),
            status=status,
            timestamp=datetime.now(timezone.utc).isoformat(),
            execution_time_ms=execution_time_ms,
        )
        self._storage.save(checkpoint)
        return checkpoint.checkpoint_id

    def get_by_conversation(self, conversation_id: str) -> list[Checkpoint]:
        return self._storage.query(conversation_id=conversation_id)


__all__ = ["Checkpoint", "CheckpointStorage", "CheckpointLogger", "InMemoryCheckpointStorage"]
