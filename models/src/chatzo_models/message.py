"""Message and content part models."""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal
import uuid

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:16]}"


MessageRole = Literal["user", "assistant", "tool"]
ToolInvocationState = Literal["partial-call", "call", "result"]

# Allowed forward transitions for a tool invocation
_STATE_ORDER: dict[str, int] = {"partial-call": 0, "call": 1, "result": 2}


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ReasoningPart(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    text: str
    duration_ms: int | None = None


class FilePart(BaseModel):
    """A file attachment, stored either as a durable URL or inline base64 data."""

    type: Literal["file"] = "file"
    mime_type: str = "application/octet-stream"
    filename: str = ""
    url: str | None = None
    data: str | None = None


class ToolInvocation(BaseModel):
    state: ToolInvocationState
    tool_call_id: str
    tool_name: str
    args: Any = None
    result: Any = None
    step: int | None = None

    def can_transition(self, state: ToolInvocationState) -> bool:
        """Return True if `state` is the next step of partial-call -> call -> result."""
        return _STATE_ORDER[state] == _STATE_ORDER[self.state] + 1


class ToolInvocationPart(BaseModel):
    type: Literal["tool-invocation"] = "tool-invocation"
    tool_invocation: ToolInvocation


class ErrorInfo(BaseModel):
    code: str
    message: str


class ErrorPart(BaseModel):
    type: Literal["error"] = "error"
    error: ErrorInfo


ContentPart = Annotated[
    TextPart | ReasoningPart | FilePart | ToolInvocationPart | ErrorPart,
    Field(discriminator="type"),
]


class TokenUsage(BaseModel):
    """Token counts for one response, summed across every generation step."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    reasoning_tokens: int = 0

    def add(
        self,
        prompt_tokens: int | None = None,
        completion_tokens: int | None = None,
        reasoning_tokens: int | None = None,
    ) -> None:
        self.prompt_tokens += prompt_tokens or 0
        self.completion_tokens += completion_tokens or 0
        self.reasoning_tokens += reasoning_tokens or 0


class MessageMetadata(BaseModel):
    """AI-related information attached to an assistant message."""

    model_id: str | None = None
    model_name: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    reasoning_tokens: int | None = None
    server_duration_ms: int | None = None


class Message(BaseModel):
    """A single message in a thread."""

    id: str = Field(default_factory=new_message_id, description="Public message ID")
    thread_id: str = Field(..., description="Parent thread ID")
    role: MessageRole = Field(..., description="Message role")
    parts: list[ContentPart] = Field(default_factory=list, description="Ordered content parts")
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)
    created_at: datetime = Field(default_factory=_now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=_now, description="Last update timestamp")
    edited: bool = False
    edited_at: datetime | None = None
    is_deleted: bool = False
