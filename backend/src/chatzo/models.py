"""API-specific request and response models."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chatzo_models import ContentPart, Message, Thread, TextPart, new_message_id


class IncomingMessage(BaseModel):
    """The new user message of a chat turn."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message_id: str = Field(default_factory=new_message_id)
    role: Literal["user"] = "user"
    parts: list[ContentPart] = Field(default_factory=list)

    def text(self) -> str:
        return " ".join(p.text for p in self.parts if isinstance(p, TextPart)).strip()


class ChatRequest(BaseModel):
    """Request model for a streamed chat turn."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    thread_id: str | None = Field(None, description="Existing thread ID")
    message: IncomingMessage
    model: str = Field(..., description="Model ID from the catalogue")
    enabled_tools: list[str] = Field(default_factory=list)
    edit_from_message_id: str | None = None
    edit_mode: Literal["normal", "edit", "retry"] | None = None
    image_size: str | None = None
    proposed_assistant_id: str | None = None
    stream_id: str | None = None


class ThreadListResponse(BaseModel):
    """Response model for a list of threads."""

    threads: list[Thread]
    total: int


class ThreadResponse(BaseModel):
    """Response model for a thread with its messages."""

    thread: Thread
    messages: list[Message] = Field(default_factory=list)


class RenameThreadRequest(BaseModel):
    title: str


class PinThreadRequest(BaseModel):
    """Set the pinned flag, or toggle it when omitted."""

    pinned: bool | None = None


class DeleteMessagesResponse(BaseModel):
    deleted: int
