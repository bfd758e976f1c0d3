"""
Tool-Call Orchestrator - One chat turn

Flow:
1. Submit history + tool catalog to the model (AwaitingModel)
2. Forward text deltas as chunk events (Streaming)
3. Collect tool-call requests (ToolCallsReceived)
4. Validate and execute each call sequentially, in order (Executing)
5. Append results as tool messages and resubmit, until the model answers
   without tool calls (Done) or the turn fails (Failed) / is cancelled

Validation and execution errors are fed back to the model as tool results.
Upstream failures and the iteration cap end the turn. Every turn publishes
exactly one terminal event, last.
"""

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, AsyncIterator

from sheetchat.config import OrchestratorSettings
from sheetchat.core.checkpoint_logger import CheckpointLogger
from sheetchat.core.conversation import ChatMessage, Conversation, ToolCall
from sheetchat.core.llm import ModelClient, ModelEvent, TextDelta, ToolCallRequest, UsageReport
from sheetchat.core.llm.prompts import build_system_prompt
from sheetchat.core.query_engine import QueryEngine
from sheetchat.core.streaming import (
    ChunkEvent,
    DoneEvent,
    ErrorEvent,
    EventChannel,
    ToolCallEvent,
    ToolResultEvent,
)
from sheetchat.core.table_store import InMemoryTableStore
from sheetchat.core.tool_registry import PluginRegistry
from sheetchat.exceptions import (
    IterationCapExceededException,
    SheetChatException,
    ToolExecutionException,
    ToolValidationException,
    TurnCancelledException,
)

logger = logging.getLogger(__name__)

_END = object()


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    STREAMING = "streaming"
    TOOL_CALLS_RECEIVED = "tool_calls_received"
    EXECUTING = "executing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({TurnState.DONE, TurnState.FAILED, TurnState.CANCELLED})


def _event_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


class Orchestrator:
    """
    Drives a single turn of one conversation.

    One instance per turn: it carries the turn's state, iteration count and
    usage. Shared collaborators (registry, engine, store, model client) are
    injected and never mutated.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        engine: QueryEngine,
        store: InMemoryTableStore,
        model: ModelClient,
        settings: OrchestratorSettings | None = None,
        checkpoints: CheckpointLogger | None = None,
    ):
        self._registry = registry
        self._engine = engine
        self._store = store
        self._model = model
        self._settings = settings or OrchestratorSettings()
        self._checkpoints = checkpoints
        self.state = TurnState.IDLE
        self.iterations = 0
        self.usage = {"input_tokens": 0, "output_tokens": 0}

    async def run(
        self,
        conversation: Conversation,
        channel: EventChannel,
        cancel_event: asyncio.Event | None = None,
    ) -> TurnState:
        """
        Run the turn for the latest user message in ``conversation``.

        Never raises for turn-level failures: they are published as the
        terminal error event and reflected in the returned state.
        """
        if self.state != TurnState.IDLE:
            raise RuntimeError("Orchestrator instances run a single turn")

        cancel_event = cancel_event or asyncio.Event()
        logger.info(f"[orchestrator] Turn started for {conversation.id}")

        try:
            await self._loop(conversation, channel, cancel_event)
        except TurnCancelledException as e:
            self.state = TurnState.CANCELLED
            self._abandon(conversation)
            logger.info(f"[orchestrator] Turn cancelled for {conversation.id} after {self.iterations} iteration(s)")
            channel.publish(ErrorEvent(code=e.code, message=e.message))
        except SheetChatException as e:
            self.state = TurnState.FAILED
            logger.warning(f"[orchestrator] Turn failed for {conversation.id}: {e.code} - {e.message}")
            channel.publish(ErrorEvent(code=e.code, message=e.message))
        except Exception:
            self.state = TurnState.FAILED
            logger.exception(f"[orchestrator] Unexpected error in turn for {conversation.id}")
            channel.publish(ErrorEvent(code="INTERNAL_ERROR", message="An unexpected error occurred"))
        else:
            self.state = TurnState.DONE
            logger.info(
                f"[orchestrator] Turn done for {conversation.id}: "
                f"iterations={self.iterations}, usage={self.usage}"
            )
            channel.publish(DoneEvent(iterations=self.iterations, usage=dict(self.usage)))
        finally:
            streaming = conversation.streaming_message
            if streaming is not None:
                streaming.streaming = False

        return self.state

    async def _loop(self, conversation: Conversation, channel: EventChannel, cancel_event: asyncio.Event) -> None:
        tools = self._registry.tool_catalog()
        files = [r for r in (self._store.get(fid) for fid in conversation.file_ids) if r is not None]
        system_prompt = build_system_prompt(files)
        max_iterations = self._settings.max_iterations

        while True:
            _raise_if_cancelled(cancel_event)
            self.state = TurnState.AWAITING_MODEL
            self.iterations += 1

            history = list(conversation.messages)
            assistant = conversation.append(ChatMessage(role="assistant", streaming=True))
            await self._consume_model(system_prompt, history, tools, assistant, channel, cancel_event)
            assistant.streaming = False

            if not assistant.tool_calls:
                return

            if self.iterations >= max_iterations:
                error = IterationCapExceededException(max_iterations)
                for call in assistant.tool_calls:
                    call.mark_failed(error.to_payload())
                    self._surface_result(channel, call)
                raise error

            self.state = TurnState.EXECUTING
            for call in assistant.tool_calls:
                _raise_if_cancelled(cancel_event)
                await self._execute_call(conversation, call, channel, cancel_event)

    async def _consume_model(
        self,
        system_prompt: str,
        history: list[ChatMessage],
        tools: list[dict[str, Any]],
        assistant: ChatMessage,
        channel: EventChannel,
        cancel_event: asyncio.Event,
    ) -> None:
        events = self._model.stream(system_prompt, history, tools).__aiter__()
        try:
            while True:
                event = await _next_or_cancel(events, cancel_event)
                if event is _END:
                    return
                self._handle_model_event(event, assistant, channel)
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()

    def _handle_model_event(self, event: ModelEvent, assistant: ChatMessage, channel: EventChannel) -> None:
        if isinstance(event, TextDelta):
            if not event.text:
                return
            if self.state == TurnState.AWAITING_MODEL:
                self.state = TurnState.STREAMING
            assistant.content += event.text
            channel.publish(ChunkEvent(content=event.text))
        elif isinstance(event, ToolCallRequest):
            self.state = TurnState.TOOL_CALLS_RECEIVED
            call = ToolCall(id=event.id, name=event.name, raw_arguments=event.arguments)
            assistant.tool_calls.append(call)
            logger.info(f"[orchestrator] Tool call {call.id}: {call.name}")
            channel.publish(ToolCallEvent(id=call.id, name=call.name, arguments=_event_arguments(event.arguments)))
        elif isinstance(event, UsageReport):
            self.usage["input_tokens"] += event.input_tokens
            self.usage["output_tokens"] += event.output_tokens

    async def _execute_call(
        self,
        conversation: Conversation,
        call: ToolCall,
        channel: EventChannel,
        cancel_event: asyncio.Event,
    ) -> None:
        started = time.perf_counter()
        result: dict[str, Any] | None = None
        error: dict[str, Any] | None = None
        status = "ok"

        try:
            call.arguments = self._registry.validate(call.name, call.raw_arguments)
            result = await asyncio.wait_for(
                asyncio.to_thread(self._engine.execute, call.name, call.arguments),
                timeout=self._settings.tool_timeout_seconds,
            )
        except (ToolValidationException, ToolExecutionException) as e:
            error = e.to_payload()
            status = "error"
        except asyncio.TimeoutError:
            error = {
                "code": "TOOL_TIMEOUT",
                "message": f"{call.name} exceeded {self._settings.tool_timeout_seconds}s",
            }
            status = "timeout"

        elapsed_ms = (time.perf_counter() - started) * 1000
        if self._checkpoints is not None:
            self._checkpoints.log(
                conversation_id=conversation.id,
                tool_call_id=call.id,
                tool=call.name,
                input_data=call.arguments.model_dump() if call.arguments else _event_arguments(call.raw_arguments),
                output_data=result if error is None else {"error": error},
                status=status,
                execution_time_ms=round(elapsed_ms, 2),
            )

        if cancel_event.is_set():
            call.mark_failed(TurnCancelledException().to_payload())
            raise TurnCancelledException()

        if error is None:
            call.mark_executed(result)
            content = {"result": result}
        else:
            logger.info(f"[orchestrator] Tool call {call.id} ({call.name}) failed: {error['code']}")
            call.mark_failed(error)
            content = {"error": error}

        conversation.append(
            ChatMessage(
                role="tool",
                content=json.dumps(content, ensure_ascii=False, default=str),
                tool_call_id=call.id,
                name=call.name,
            )
        )
        self._surface_result(channel, call)

    def _surface_result(self, channel: EventChannel, call: ToolCall) -> None:
        if not self._settings.surface_tool_results:
            return
        if call.status == "executed":
            channel.publish(ToolResultEvent(id=call.id, name=call.name, status="executed", result=call.result))
        else:
            channel.publish(
                ToolResultEvent(id=call.id, name=call.name, status="failed", error=(call.result or {}).get("error"))
            )

    @staticmethod
    def _abandon(conversation: Conversation) -> None:
        """Mark tool calls of the last assistant message that never started as failed."""
        last = next((m for m in reversed(conversation.messages) if m.role == "assistant"), None)
        if last is None:
            return
        payload = TurnCancelledException().to_payload()
        for call in last.tool_calls:
            if call.status == "pending":
                call.mark_failed(payload)


def _raise_if_cancelled(cancel_event: asyncio.Event) -> None:
    if cancel_event.is_set():
        raise TurnCancelledException()


async def _next_event(events: AsyncIterator[ModelEvent]) -> Any:
    try:
        return await events.__anext__()
    except StopAsyncIteration:
        return _END


async def _next_or_cancel(events: AsyncIterator[ModelEvent], cancel_event: asyncio.Event) -> Any:
    """Await the next model event, giving up as soon as the turn is cancelled."""
    _raise_if_cancelled(cancel_event)
    next_task = asyncio.ensure_future(_next_event(events))
    cancel_task = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({next_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        cancel_task.cancel()
    if next_task in done:
        return next_task.result()
    next_task.cancel()
    await asyncio.wait({next_task})
    raise TurnCancelledException()


__all__ = ["Orchestrator", "TurnState", "TERMINAL_STATES"]
