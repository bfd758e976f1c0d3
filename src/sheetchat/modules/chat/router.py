"""SheetChat Chat - Router.

Streaming chat turns (SSE) and conversation inspection.
"""

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from sheetchat.modules.chat.schemas import (
    CancelResponse,
    ChatRequest,
    CheckpointListResponse,
    ConversationResponse,
)
from sheetchat.modules.chat.service import ChatService

router = APIRouter(prefix="/api/chat", tags=["Chat"])


def get_service(request: Request) -> ChatService:
    """The app's ChatService (it owns the running turns)."""
    return request.app.state.chat_service


@router.post("")
async def chat(data: ChatRequest, service: ChatService = Depends(get_service)):
    """
    Start a turn and stream its events.

    Each SSE data frame is one JSON wire event: chunk, tool_call, tool_result,
    then exactly one done or error. The conversation id is returned in the
    X-Conversation-ID header.
    """
    turn = await service.start_turn(data)
    return EventSourceResponse(
        service.stream(turn),
        headers={"X-Conversation-ID": turn.conversation.id},
    )


@router.post("/{conversation_id}/cancel", response_model=CancelResponse)
async def cancel_turn(conversation_id: str, service: ChatService = Depends(get_service)) -> CancelResponse:
    """Cancel the running turn of a conversation, if any."""
    return service.cancel(conversation_id)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(conversation_id: str, service: ChatService = Depends(get_service)) -> ConversationResponse:
    return service.get_conversation(conversation_id)


@router.get("/{conversation_id}/checkpoints", response_model=CheckpointListResponse)
async def get_checkpoints(
    conversation_id: str,
    service: ChatService = Depends(get_service),
) -> CheckpointListResponse:
    """Tool executions recorded for a conversation."""
    return service.get_checkpoints(conversation_id)
