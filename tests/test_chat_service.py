"""
Tests for turn scheduling: one turn per conversation, cancellation, cleanup.
"""

import asyncio
import json

import pytest

from sheetchat.context import AppContext
from sheetchat.exceptions import FileNotFoundException, TurnInProgressException, ValidationException
from sheetchat.modules.chat.schemas import ChatRequest
from sheetchat.modules.chat.service import ChatService

from conftest import SALES_CSV, Block, ScriptedModelClient, add_file, text


async def _frames(service, turn) -> list[dict]:
    return [json.loads(frame["data"]) async for frame in service.stream(turn)]


@pytest.mark.asyncio
async def test_second_message_mid_turn_is_rejected(settings):
    block = Block()
    context = AppContext(settings=settings, model=ScriptedModelClient([[text("a"), block, text("b")], [text("c")]]))
    service = ChatService(context)

    turn = await service.start_turn(ChatRequest(message="first"))
    await asyncio.wait_for(block.reached.wait(), timeout=2)

    with pytest.raises(TurnInProgressException) as exc:
        await service.start_turn(ChatRequest(message="second", conversation_id=turn.conversation.id))
    assert exc.value.status_code == 409
    assert [m.role for m in turn.conversation.messages] == ["user", "assistant"]

    block.release.set()
    frames = await _frames(service, turn)
    assert [f["type"] for f in frames] == ["chunk", "chunk", "done"]

    await turn.task
    assert not turn.conversation.turn_in_progress
    assert not service.is_running(turn.conversation.id)

    follow_up = await service.start_turn(ChatRequest(message="second", conversation_id=turn.conversation.id))
    assert [f["type"] for f in await _frames(service, follow_up)] == ["chunk", "done"]


@pytest.mark.asyncio
async def test_cancel_running_turn(settings):
    block = Block()
    context = AppContext(settings=settings, model=ScriptedModelClient([[text("a"), block]]))
    service = ChatService(context)

    turn = await service.start_turn(ChatRequest(message="hi"))
    await asyncio.wait_for(block.reached.wait(), timeout=2)

    response = service.cancel(turn.conversation.id)
    frames = await _frames(service, turn)
    await turn.task

    assert response.cancelled is True
    assert frames[-1] == {"type": "error", "message": "Turn cancelled by caller", "code": "CANCELLED"}
    assert service.cancel(turn.conversation.id).cancelled is False
    assert not turn.conversation.turn_in_progress


@pytest.mark.asyncio
async def test_client_leaving_cancels_turn(settings):
    block = Block()
    context = AppContext(settings=settings, model=ScriptedModelClient([[text("a"), block]]))
    service = ChatService(context)

    turn = await service.start_turn(ChatRequest(message="hi"))
    stream = service.stream(turn)
    first = await stream.__anext__()
    await stream.aclose()

    assert json.loads(first["data"])["type"] == "chunk"
    assert turn.cancel_event.is_set()
    await asyncio.wait_for(turn.task, timeout=2)
    assert turn.channel.closed


@pytest.mark.asyncio
async def test_request_validation(settings):
    context = AppContext(settings=settings, model=ScriptedModelClient([[text("a")]]))
    service = ChatService(context)
    record = add_file(context.store, SALES_CSV, "sales.csv")
    max_files = settings.orchestrator.max_files_per_turn

    with pytest.raises(ValidationException) as exc:
        await service.start_turn(ChatRequest(message="hi", file_ids=[record.id] * (max_files + 1)))
    assert exc.value.code == "TOO_MANY_FILES"

    with pytest.raises(FileNotFoundException):
        await service.start_turn(ChatRequest(message="hi", file_ids=["file_missing"]))

    assert context.conversations.list() == []
