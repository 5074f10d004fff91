"""Shared Pydantic models for chatzo."""

from chatzo_models.message import (
    ContentPart,
    ErrorInfo,
    ErrorPart,
    FilePart,
    Message,
    MessageMetadata,
    MessageRole,
    ReasoningPart,
    TextPart,
    TokenUsage,
    ToolInvocation,
    ToolInvocationPart,
    ToolInvocationState,
    new_message_id,
)
from chatzo_models.model import ModelAbility, ModelDescriptor
from chatzo_models.thread import Thread, User

__all__ = [
    # Threads
    "Thread",
    "User",
    # Messages
    "Message",
    "MessageRole",
    "MessageMetadata",
    "TokenUsage",
    "new_message_id",
    # Content parts
    "ContentPart",
    "TextPart",
    "ReasoningPart",
    "FilePart",
    "ToolInvocation",
    "ToolInvocationPart",
    "ToolInvocationState",
    "ErrorPart",
    "ErrorInfo",
    # Models
    "ModelAbility",
    "ModelDescriptor",
]
