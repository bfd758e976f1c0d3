"""
Shared fixtures: in-memory store with a sales file, and a scripted model
client that replays canned model submissions without network access.
"""

import asyncio
from typing import Any, Callable

import pytest

from sheetchat.config import OrchestratorSettings, QuerySettings, Settings
from sheetchat.core.checkpoint_logger import CheckpointLogger
from sheetchat.core.conversation import ChatMessage, Conversation
from sheetchat.core.ingest import build_file_record
from sheetchat.core.llm import ModelClient, TextDelta, ToolCallRequest, UsageReport
from sheetchat.core.query_engine import QueryEngine
from sheetchat.core.table_store import FileRecord, InMemoryTableStore
from sheetchat.core.tool_registry import build_default_registry

SALES_CSV = b"region,amount\neast,10\nwest,20\neast,30\n"


class Block:
    """Script step that parks the model stream until the test releases it."""

    def __init__(self):
        self.reached = asyncio.Event()
        self.release = asyncio.Event()


class ScriptedModelClient(ModelClient):
    """
    Replays one list of steps per submission.

    Steps are model events, exceptions (raised), callables (invoked) or
    Block instances. Past the end of the script the last submission repeats.
    """

    name = "scripted"

    def __init__(self, script: list[list[Any]] | Callable[[int], list[Any]]):
        self._script = script
        self.submissions: list[list[ChatMessage]] = []
        self.system_prompts: list[str] = []
        self.tools: list[dict] = []

    def _steps(self, index: int) -> list[Any]:
        if callable(self._script):
            return self._script(index)
        return self._script[min(index, len(self._script) - 1)]

    async def stream(self, system_prompt, messages, tools):
        index = len(self.submissions)
        self.submissions.append(list(messages))
        self.system_prompts.append(system_prompt)
        self.tools = tools
        for step in self._steps(index):
            if isinstance(step, BaseException):
                raise step
            if isinstance(step, Block):
                step.reached.set()
                await step.release.wait()
                continue
            if callable(step):
                step()
                continue
            yield step
            await asyncio.sleep(0)


def text(value: str) -> TextDelta:
    return TextDelta(value)


def call(call_id: str, name: str, **arguments: Any) -> ToolCallRequest:
    return ToolCallRequest(id=call_id, name=name, arguments=arguments)


def usage(input_tokens: int, output_tokens: int) -> UsageReport:
    return UsageReport(input_tokens=input_tokens, output_tokens=output_tokens)


def add_file(store: InMemoryTableStore, content: bytes, filename: str) -> FileRecord:
    record = build_file_record(content, filename, sequence=store.next_sequence())
    store.put(record)
    return record


def user_turn(message: str, file_ids: list[str] | None = None) -> Conversation:
    conversation = Conversation()
    conversation.attach_files(file_ids or [])
    conversation.append(ChatMessage(role="user", content=message))
    return conversation


@pytest.fixture
def store() -> InMemoryTableStore:
    return InMemoryTableStore()


@pytest.fixture
def sales(store) -> FileRecord:
    return add_file(store, SALES_CSV, "sales.csv")


@pytest.fixture
def registry():
    return build_default_registry()


@pytest.fixture
def query_settings() -> QuerySettings:
    return QuerySettings(default_rows=5, max_rows=100)


@pytest.fixture
def engine(store, query_settings) -> QueryEngine:
    return QueryEngine(store, query_settings)


@pytest.fixture
def checkpoints() -> CheckpointLogger:
    return CheckpointLogger()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        orchestrator=OrchestratorSettings(max_iterations=3, tool_timeout_seconds=5.0),
        query=QuerySettings(default_rows=5, max_rows=100),
    )


@pytest.fixture(autouse=True)
def _reset_sse_exit_event():
    """sse-starlette keeps a class-level exit event bound to the first event loop."""
    import sse_starlette.sse as sse

    app_status = getattr(sse, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
    yield
