"""
Conversation state - messages, tool calls and the per-conversation turn lock.

Messages are append-only. The only in-place edits are growing the content of
the single streaming message and closing it.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from sheetchat.tools.args import ToolArgs

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant", "tool"]
ToolCallStatus = Literal["pending", "executed", "failed"]


def new_message_id() -> str:
    return f"msg_{uuid4().hex[:16]}"


def new_conversation_id() -> str:
    return f"conv_{uuid4().hex[:16]}"


@dataclass
class ToolCall:
    id: str
    name: str
    raw_arguments: Any
    arguments: ToolArgs | None = None
    result: dict[str, Any] | None = None
    status: ToolCallStatus = "pending"

    def mark_executed(self, result: dict[str, Any]) -> None:
        self.result = result
        self.status = "executed"

    def mark_failed(self, error: dict[str, Any]) -> None:
        self.result = {"error": error}
        self.status = "failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments.model_dump(exclude_none=True) if self.arguments else self.raw_arguments,
            "status": self.status,
            "result": self.result,
        }


@dataclass
class ChatMessage:
    role: Role
    content: str = ""
    id: str = field(default_factory=new_message_id)
    tool_calls: list[ToolCall] = field(default_factory=list)
    streaming: bool = False
    tool_call_id: str | None = None   # tool role only
    name: str | None = None           # tool role only
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "streaming": self.streaming,
            "created_at": self.created_at.isoformat(),
        }
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.role == "tool":
            data["tool_call_id"] = self.tool_call_id
            data["name"] = self.name
        return data


@dataclass
class Conversation:
    id: str = field(default_factory=new_conversation_id)
    messages: list[ChatMessage] = field(default_factory=list)
    file_ids: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def turn_in_progress(self) -> bool:
        return self.turn_lock.locked()

    @property
    def streaming_message(self) -> ChatMessage | None:
        for message in reversed(self.messages):
            if message.streaming:
                return message
        return None

    def append(self, message: ChatMessage) -> ChatMessage:
        if any(m.id == message.id for m in self.messages):
            raise ValueError(f"Duplicate message id {message.id} in conversation {self.id}")
        if message.streaming and self.streaming_message is not None:
            raise ValueError(f"Conversation {self.id} already has a streaming message")
        self.messages.append(message)
        return message

    def attach_files(self, file_ids: list[str]) -> None:
        for file_id in file_ids:
            if file_id not in self.file_ids:
                self.file_ids.append(file_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_ids": list(self.file_ids),
            "created_at": self.created_at.isoformat(),
            "turn_in_progress": self.turn_in_progress,
            "messages": [m.to_dict() for m in self.messages],
        }


class ConversationStore:
    """In-memory conversations, one instance per app context."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: dict[str, Conversation] = {}

    def get(self, conversation_id: str) -> Conversation | None:
        with self._lock:
            return self._items.get(conversation_id)

    def get_or_create(self, conversation_id: str | None = None) -> Conversation:
        with self._lock:
            if conversation_id and conversation_id in self._items:
                return self._items[conversation_id]
            conversation = Conversation(id=conversation_id) if conversation_id else Conversation()
            self._items[conversation.id] = conversation
        logger.info(f"[conversation] Created {conversation.id}")
        return conversation

    def list(self) -> list[Conversation]:
        with self._lock:
            return list(self._items.values())


__all__ = [
    "ChatMessage",
    "Conversation",
    "ConversationStore",
    "Role",
    "ToolCall",
    "ToolCallStatus",
    "new_message_id",
]
