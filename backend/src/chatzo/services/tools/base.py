"""Types shared by the tool registry and its adapters."""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx

from chatzo.providers.base import ToolSpec


@dataclass
class ToolDefinition:
    """A tool the model may call, with the function that executes it."""

    name: str
    description: str
    parameters: dict[str, Any]
    execute: Callable[..., Awaitable[Any]]

    def spec(self) -> ToolSpec:
        return ToolSpec(name=self.name, description=self.description, parameters=self.parameters)


@dataclass
class ToolContext:
    """Request context handed to every adapter."""

    enabled_tools: list[str] = field(default_factory=list)
    user_id: str | None = None
    http: httpx.AsyncClient | None = None


ToolAdapter = Callable[[ToolContext], Awaitable[dict[str, ToolDefinition | None]]]
