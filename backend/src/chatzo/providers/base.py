"""Provider-neutral generation interfaces and stream events.

Every language model binding turns one generation step into a sequence of
the events below. The multi-step tool loop in ``chatzo.services.generation``
stitches steps together, so the part accumulator only ever sees this one
event vocabulary.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol


# ============= Provider Messages =============


@dataclass
class ProviderMessage:
    """One provider-native message: a role and a list of typed content items.

    Content items are dicts with a ``type`` of ``text``, ``image``, ``file``,
    ``reasoning``, ``tool-call`` or ``tool-result``.
    """

    role: str
    content: list[dict[str, Any]]
    message_id: str = ""


# ============= Stream Events =============


@dataclass
class TextDelta:
    text: str


@dataclass
class ReasoningDelta:
    text: str


@dataclass
class ToolCallStreamingStart:
    tool_call_id: str
    tool_name: str


@dataclass
class ToolCallDelta:
    tool_call_id: str
    tool_name: str
    args_text_delta: str


@dataclass
class ToolCall:
    tool_call_id: str
    tool_name: str
    args: dict[str, Any]


@dataclass
class ToolResult:
    tool_call_id: str
    tool_name: str
    result: Any


@dataclass
class FileEvent:
    """A file produced by the model, as inline bytes."""

    mime_type: str
    data: bytes
    filename: str = ""


@dataclass
class StepStart:
    step: int


@dataclass
class StepFinish:
    step: int
    finish_reason: str = "stop"
    is_continued: bool = False


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    reasoning_tokens: int = 0


StreamEvent = (
    TextDelta
    | ReasoningDelta
    | ToolCallStreamingStart
    | ToolCallDelta
    | ToolCall
    | ToolResult
    | FileEvent
    | StepStart
    | StepFinish
    | Usage
)


# ============= Model Interfaces =============


@dataclass
class ToolSpec:
    """Tool declaration sent to the provider (no execution function)."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class GenerationOptions:
    system: str | None = None
    reasoning_effort: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class LanguageModel(Protocol):
    """A bound text model. One call streams exactly one generation step."""

    model_id: str

    def stream_step(
        self,
        messages: list[ProviderMessage],
        tools: list[ToolSpec],
        options: GenerationOptions,
        abort: asyncio.Event,
    ) -> AsyncIterator[StreamEvent]: ...


@dataclass
class GeneratedImage:
    data: bytes
    mime_type: str = "image/png"


class ImageModel(Protocol):
    """A bound image model."""

    model_id: str

    async def generate(
        self,
        prompt: str,
        size: str | None = None,
        aspect_ratio: str | None = None,
    ) -> list[GeneratedImage]: ...


class ProviderError(Exception):
    """A provider call failed in a way that ends the generation."""
