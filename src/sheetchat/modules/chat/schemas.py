"""
SheetChat Chat - Schemas

Pydantic models for chat turns and conversation inspection.
"""

from datetime import datetime
from typing import Any, List, Literal

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Start a turn. Omit conversation_id to open a new conversation."""
    message: str = Field(..., min_length=1, description="User message")
    conversation_id: str | None = Field(default=None, description="Existing conversation to continue")
    file_ids: List[str] = Field(default_factory=list, description="Files to attach to the conversation")


class ToolCallResponse(BaseModel):
    id: str
    name: str
    arguments: Any = None
    status: Literal["pending", "executed", "failed"]
    result: dict[str, Any] | None = None


class MessageResponse(BaseModel):
    id: str
    role: Literal["user", "assistant", "tool"]
    content: str
    streaming: bool = False
    created_at: datetime
    tool_calls: List[ToolCallResponse] = Field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None


class ConversationResponse(BaseModel):
    id: str
    file_ids: List[str]
    created_at: datetime
    turn_in_progress: bool
    messages: List[MessageResponse]


class CancelResponse(BaseModel):
    conversation_id: str
    cancelled: bool = Field(..., description="False when no turn was running")


class CheckpointResponse(BaseModel):
    checkpoint_id: str
    conversation_id: str
    tool_call_id: str
    tool: str
    input: dict[str, Any]
    output: dict[str, Any]
    status: Literal["ok", "error", "timeout"]
    timestamp: datetime
    execution_time_ms: float


class CheckpointListResponse(BaseModel):
    items: List[CheckpointResponse]
    total: int
