"""
Model client contract.

The orchestrator only sees a stream of provider-neutral events; the provider
(Gemini by default) is an implementation detail of a ModelClient.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Union

from sheetchat.core.conversation import ChatMessage


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallRequest:
    """A fully parsed tool call as requested by the model."""
    id: str
    name: str
    arguments: Any = field(default_factory=dict)


@dataclass(frozen=True)
class UsageReport:
    input_tokens: int = 0
    output_tokens: int = 0


ModelEvent = Union[TextDelta, ToolCallRequest, UsageReport]


class ModelClient(ABC):
    """Drives one model submission."""

    name: str = "model"

    @abstractmethod
    def stream(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[ModelEvent]:
        """
        Submit the history and stream back events.

        Raises:
            UpstreamException: On provider failure (auth, quota, outage)
        """


__all__ = ["ModelClient", "ModelEvent", "TextDelta", "ToolCallRequest", "UsageReport"]
