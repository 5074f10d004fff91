"""Tool registry.

Each adapter looks at the request context and returns the tools it provides,
or an empty dict when its ability is not enabled. Adding an ability means
adding an adapter to `TOOL_ADAPTERS` and its id to `ABILITIES`.
"""

import asyncio
import logging

from chatzo.services.tools.base import ToolAdapter, ToolContext, ToolDefinition
from chatzo.services.tools.web_search import web_search_adapter

logger = logging.getLogger(__name__)

ABILITIES = ("web_search",)

TOOL_ADAPTERS: list[ToolAdapter] = [web_search_adapter]

__all__ = ["ABILITIES", "TOOL_ADAPTERS", "ToolContext", "ToolDefinition", "get_toolkit"]


async def get_toolkit(
    ctx: ToolContext, adapters: list[ToolAdapter] | None = None
) -> dict[str, ToolDefinition]:
    """Collect the tools of every adapter, skipping empty entries."""
    unknown = set(ctx.enabled_tools) - set(ABILITIES)
    if unknown:
        logger.warning(f"Ignoring unknown abilities: {sorted(unknown)}")

    adapters = TOOL_ADAPTERS if adapters is None else adapters
    results = await asyncio.gather(*(adapter(ctx) for adapter in adapters))

    tools: dict[str, ToolDefinition] = {}
    for result in results:
        for name, definition in result.items():
            if definition:
                tools[name] = definition

    logger.debug(f"Toolkit: {list(tools)}")
    return tools
