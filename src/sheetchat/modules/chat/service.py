"""
SheetChat Chat - Service

Starts turns, tracks the running ones for cancellation and exposes their
event streams.

A conversation runs at most one turn at a time: a second message while a turn
is running is rejected with TURN_IN_PROGRESS rather than queued.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator

from sheetchat.context import AppContext
from sheetchat.core.conversation import ChatMessage, Conversation
from sheetchat.core.orchestrator import Orchestrator
from sheetchat.core.streaming import ErrorEvent, EventChannel, to_sse, wire_events
from sheetchat.exceptions import (
    NotFoundException,
    TurnCancelledException,
    TurnInProgressException,
    ValidationException,
)
from sheetchat.modules.chat.schemas import (
    CancelResponse,
    ChatRequest,
    CheckpointListResponse,
    CheckpointResponse,
    ConversationResponse,
)

logger = logging.getLogger(__name__)


@dataclass
class ActiveTurn:
    conversation: Conversation
    orchestrator: Orchestrator
    channel: EventChannel
    cancel_event: asyncio.Event
    task: asyncio.Task | None = None


class ChatService:
    """One instance per app; owns the registry of running turns."""

    def __init__(self, context: AppContext):
        self._context = context
        self._active: dict[str, ActiveTurn] = {}

    async def start_turn(self, request: ChatRequest) -> ActiveTurn:
        """
        Validate the request, take the conversation's turn lock and launch
        the orchestrator in the background.

        Raises:
            ValidationException: Too many files attached
            FileNotFoundException: Unknown file id
            TurnInProgressException: The conversation is already running a turn
        """
        ctx = self._context
        max_files = ctx.settings.orchestrator.max_files_per_turn
        if len(request.file_ids) > max_files:
            raise ValidationException(
                f"At most {max_files} files can be attached to a chat request",
                code="TOO_MANY_FILES",
            )
        for file_id in request.file_ids:
            ctx.store.get_or_raise(file_id)

        conversation = ctx.conversations.get_or_create(request.conversation_id)
        if conversation.turn_in_progress:
            raise TurnInProgressException(conversation.id)
        await conversation.turn_lock.acquire()

        try:
            conversation.attach_files(request.file_ids)
            conversation.append(ChatMessage(role="user", content=request.message))
            turn = ActiveTurn(
                conversation=conversation,
                orchestrator=Orchestrator(
                    registry=ctx.registry,
                    engine=ctx.engine,
                    store=ctx.store,
                    model=ctx.model,
                    settings=ctx.settings.orchestrator,
                    checkpoints=ctx.checkpoints,
                ),
                channel=EventChannel(),
                cancel_event=asyncio.Event(),
            )
            self._active[conversation.id] = turn
            turn.task = asyncio.create_task(self._run(turn))
        except BaseException:
            self._active.pop(conversation.id, None)
            conversation.turn_lock.release()
            raise

        logger.info(f"[chat] Turn started for {conversation.id} (files={conversation.file_ids})")
        return turn

    async def _run(self, turn: ActiveTurn) -> None:
        conversation = turn.conversation
        try:
            await turn.orchestrator.run(conversation, turn.channel, turn.cancel_event)
        except asyncio.CancelledError:
            if not turn.channel.closed:
                error = TurnCancelledException("Turn aborted by server")
                turn.channel.publish(ErrorEvent(code=error.code, message=error.message))
            raise
        finally:
            self._active.pop(conversation.id, None)
            conversation.turn_lock.release()

    async def stream(self, turn: ActiveTurn) -> AsyncIterator[dict[str, str]]:
        """
        SSE frames of one turn, terminal event last.

        A client that goes away before the terminal event cancels the turn.
        """
        finished = False
        try:
            async for wire in wire_events(turn.channel):
                finished = wire["type"] in ("done", "error")
                yield to_sse(wire)
        finally:
            if not finished:
                logger.info(f"[chat] Client left turn of {turn.conversation.id}; cancelling")
                turn.cancel_event.set()

    def cancel(self, conversation_id: str) -> CancelResponse:
        if self._context.conversations.get(conversation_id) is None:
            raise NotFoundException("Conversation", conversation_id)
        turn = self._active.get(conversation_id)
        if turn is None:
            return CancelResponse(conversation_id=conversation_id, cancelled=False)
        turn.cancel_event.set()
        logger.info(f"[chat] Cancel requested for {conversation_id}")
        return CancelResponse(conversation_id=conversation_id, cancelled=True)

    def is_running(self, conversation_id: str) -> bool:
        return conversation_id in self._active

    def get_conversation(self, conversation_id: str) -> ConversationResponse:
        conversation = self._context.conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundException("Conversation", conversation_id)
        return ConversationResponse.model_validate(conversation.to_dict())

    def get_checkpoints(self, conversation_id: str) -> CheckpointListResponse:
        if self._context.conversations.get(conversation_id) is None:
            raise NotFoundException("Conversation", conversation_id)
        items = [
            CheckpointResponse.model_validate(c.to_dict())
            for c in self._context.checkpoints.get_by_conversation(conversation_id)
        ]
        return CheckpointListResponse(items=items, total=len(items))
