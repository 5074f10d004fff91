"""Model catalogue types."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class ModelAbility(str, Enum):
    """Capabilities a model may support."""

    VISION = "vision"
    FUNCTION_CALLING = "function_calling"
    PDF = "pdf"
    REASONING = "reasoning"
    EFFORT_CONTROL = "effort_control"


class ModelDescriptor(BaseModel):
    """A model the chat endpoint can target."""

    id: str
    name: str
    provider: str
    abilities: list[ModelAbility] = Field(default_factory=list)
    mode: Literal["text", "image"] = "text"
    supported_image_sizes: list[str] = Field(default_factory=list)

    def has(self, ability: ModelAbility) -> bool:
        return ability in self.abilities
