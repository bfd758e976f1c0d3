"""
SheetChat Core - Gemini Developer API model client.

Streams one submission through google-genai with automatic function calling
disabled: tool calls are surfaced to the orchestrator, never executed by the SDK.
"""

import json
import logging
from typing import Any, AsyncIterator
from uuid import uuid4

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from sheetchat.config import GeminiSettings
from sheetchat.core.conversation import ChatMessage
from sheetchat.core.llm import ModelClient, ModelEvent, TextDelta, ToolCallRequest, UsageReport
from sheetchat.exceptions import UpstreamException

logger = logging.getLogger(__name__)


def _new_call_id() -> str:
    return f"call_{uuid4().hex[:16]}"


def upstream_error(exc: genai_errors.APIError) -> UpstreamException:
    """Map a provider error onto a stable turn error code."""
    status = getattr(exc, "code", None)
    message = getattr(exc, "message", None) or str(exc)
    if status in (401, 403):
        code = "UPSTREAM_AUTH"
    elif status == 429:
        code = "UPSTREAM_RATE_LIMITED"
    elif isinstance(exc, genai_errors.ServerError) or (isinstance(status, int) and status >= 500):
        code = "UPSTREAM_UNAVAILABLE"
    else:
        code = "UPSTREAM_ERROR"
    return UpstreamException(code=code, message=f"Gemini API error: {message}", details={"status": status})


def _tool_payload(message: ChatMessage) -> dict[str, Any]:
    try:
        payload = json.loads(message.content) if message.content else {}
    except json.JSONDecodeError:
        payload = {"result": message.content}
    if not isinstance(payload, dict):
        payload = {"result": payload}
    return payload


def to_contents(messages: list[ChatMessage]) -> list[types.Content]:
    """
    Map conversation history onto Gemini contents.

    Consecutive tool messages are merged into one user turn of
    function_response parts, which is what Gemini expects after a model
    turn with several function calls.
    """
    contents: list[types.Content] = []
    pending_responses: list[types.Part] = []
    # calls abandoned by a cancelled turn have no response and are not replayed
    answered = {m.tool_call_id for m in messages if m.role == "tool"}

    def flush() -> None:
        if pending_responses:
            contents.append(types.Content(role="user", parts=list(pending_responses)))
            pending_responses.clear()

    for message in messages:
        if message.role == "tool":
            pending_responses.append(
                types.Part(
                    function_response=types.FunctionResponse(
                        id=message.tool_call_id,
                        name=message.name,
                        response=_tool_payload(message),
                    )
                )
            )
            continue

        flush()
        if message.role == "user":
            contents.append(types.Content(role="user", parts=[types.Part(text=message.content)]))
            continue

        parts: list[types.Part] = []
        if message.content:
            parts.append(types.Part(text=message.content))
        for call in message.tool_calls:
            if call.id not in answered:
                continue
            args = call.raw_arguments if isinstance(call.raw_arguments, dict) else {}
            parts.append(types.Part(function_call=types.FunctionCall(id=call.id, name=call.name, args=args)))
        if parts:
            contents.append(types.Content(role="model", parts=parts))

    flush()
    return contents


def to_function_declarations(tools: list[dict[str, Any]]) -> list[types.FunctionDeclaration]:
    return [
        types.FunctionDeclaration(
            name=tool["name"],
            description=tool["description"],
            parameters_json_schema=tool["parameters"],
        )
        for tool in tools
    ]


class GeminiModelClient(ModelClient):
    """ModelClient on the Gemini Developer API (API key)."""

    name = "gemini"

    def __init__(self, settings: GeminiSettings):
        self._settings = settings
        self._client: genai.Client | None = None

    @property
    def model(self) -> str:
        return self._settings.model

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self._settings.api_key:
                raise UpstreamException(
                    code="UPSTREAM_AUTH",
                    message="No Gemini API key configured. Set GEMINI_API_KEY.",
                )
            self._client = genai.Client(api_key=self._settings.api_key)
            logger.info(f"[gemini] Client initialized (model={self._settings.model})")
        return self._client

    def _config(self, system_prompt: str, tools: list[dict[str, Any]]) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=self._settings.temperature,
            max_output_tokens=self._settings.max_output_tokens,
            tools=[types.Tool(function_declarations=to_function_declarations(tools))] if tools else None,
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
        )

    async def stream(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[ModelEvent]:
        client = self._get_client()
        usage: Any = None

        try:
            response = await client.aio.models.generate_content_stream(
                model=self._settings.model,
                contents=to_contents(messages),
                config=self._config(system_prompt, tools),
            )
            async for chunk in response:
                if chunk.usage_metadata:
                    usage = chunk.usage_metadata
                for candidate in chunk.candidates or []:
                    if not candidate.content:
                        continue
                    for part in candidate.content.parts or []:
                        if part.function_call is not None and part.function_call.name:
                            yield ToolCallRequest(
                                id=part.function_call.id or _new_call_id(),
                                name=part.function_call.name,
                                arguments=dict(part.function_call.args) if part.function_call.args else {},
                            )
                        elif part.text and not part.thought:
                            yield TextDelta(part.text)
        except genai_errors.APIError as e:
            logger.error(f"[gemini] Upstream failure: {e}")
            raise upstream_error(e) from e
        except httpx.TransportError as e:
            logger.error(f"[gemini] Transport failure: {type(e).__name__}: {e}")
            raise UpstreamException(
                code="UPSTREAM_UNAVAILABLE",
                message=f"Gemini API unreachable: {type(e).__name__}",
                details={"transport_error": type(e).__name__},
            ) from e

        if usage is not None:
            yield UsageReport(
                input_tokens=usage.prompt_token_count or 0,
                output_tokens=usage.candidates_token_count or 0,
            )


__all__ = ["GeminiModelClient", "to_contents", "to_function_declarations", "upstream_error"]
