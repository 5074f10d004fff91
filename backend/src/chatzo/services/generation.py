"""Multi-step generation with tool execution.

A step streams one model turn. When the turn ends with tool calls, each call
is executed, its result is appended to the conversation and another step
starts, up to `max_steps`.
"""

import asyncio
import logging
from typing import Any, AsyncIterator

from chatzo.config import settings
from chatzo.providers.base import (
    GenerationOptions,
    LanguageModel,
    ProviderMessage,
    StepFinish,
    StepStart,
    StreamEvent,
    TextDelta,
    ToolCall,
    ToolResult,
)
from chatzo.services.tools.base import ToolDefinition

logger = logging.getLogger(__name__)


async def execute_tool(tools: dict[str, ToolDefinition], call: ToolCall) -> Any:
    """Run one tool call. Failures come back as a result payload."""
    definition = tools.get(call.tool_name)
    if definition is None:
        logger.warning(f"Model called unknown tool {call.tool_name}")
        return {"success": False, "error": f"Unknown tool: {call.tool_name}"}
    if not isinstance(call.args, dict):
        return {"success": False, "error": "Tool arguments must be an object"}

    try:
        return await definition.execute(**call.args)
    except Exception as e:
        logger.error(f"Tool {call.tool_name} failed (tool_error): {e!r}")
        return {"success": False, "error": str(e) or type(e).__name__}


async def generate(
    model: LanguageModel,
    messages: list[ProviderMessage],
    tools: dict[str, ToolDefinition],
    options: GenerationOptions,
    abort: asyncio.Event,
    max_steps: int | None = None,
) -> AsyncIterator[StreamEvent]:
    """Yield the events of every step, including tool results."""
    max_steps = max_steps or settings.max_steps
    specs = [definition.spec() for definition in tools.values()]
    history = list(messages)
    executed: set[str] = set()

    for step in range(max_steps):
        yield StepStart(step=step)

        text: list[str] = []
        calls: list[ToolCall] = []
        finish_reason = "stop"

        async for event in model.stream_step(history, specs, options, abort):
            if isinstance(event, StepStart):
                continue
            if isinstance(event, StepFinish):
                finish_reason = event.finish_reason
                continue
            if isinstance(event, TextDelta):
                text.append(event.text)
            elif isinstance(event, ToolCall):
                calls.append(event)
            yield event

        results: list[ToolResult] = []
        for call in calls:
            # Each call id executes at most once
            if call.tool_call_id in executed:
                continue
            executed.add(call.tool_call_id)
            result = ToolResult(
                tool_call_id=call.tool_call_id,
                tool_name=call.tool_name,
                result=await execute_tool(tools, call),
            )
            results.append(result)
            yield result

        is_continued = bool(results) and step + 1 < max_steps
        yield StepFinish(step=step, finish_reason=finish_reason, is_continued=is_continued)
        if not is_continued:
            if results:
                logger.warning(f"Stopped after {max_steps} steps with pending tool results")
            return

        assistant_content: list[dict[str, Any]] = []
        if text:
            assistant_content.append({"type": "text", "text": "".join(text)})
        assistant_content.extend(
            {
                "type": "tool-call",
                "tool_call_id": call.tool_call_id,
                "tool_name": call.tool_name,
                "args": call.args,
            }
            for call in calls
        )
        history.append(ProviderMessage(role="assistant", content=assistant_content))
        history.append(
            ProviderMessage(
                role="tool",
                content=[
                    {
                        "type": "tool-result",
                        "tool_call_id": r.tool_call_id,
                        "tool_name": r.tool_name,
                        "result": r.result,
                    }
                    for r in results
                ],
            )
        )
