"""Client for OpenAI-compatible chat completion endpoints.

OpenRouter, Groq, Mistral and Google all expose the same streaming
``/chat/completions`` API, so one binding serves every text model.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator

import httpx

from chatzo.config import settings
from chatzo.providers.base import (
    GenerationOptions,
    ProviderError,
    ProviderMessage,
    ReasoningDelta,
    StepFinish,
    StreamEvent,
    TextDelta,
    ToolCall,
    ToolCallDelta,
    ToolCallStreamingStart,
    ToolSpec,
    Usage,
)

logger = logging.getLogger(__name__)


def to_openai_messages(
    messages: list[ProviderMessage], system: str | None = None
) -> list[dict[str, Any]]:
    """Convert provider messages to the chat completions wire format."""
    wire: list[dict[str, Any]] = []
    if system:
        wire.append({"role": "system", "content": system})

    for msg in messages:
        if msg.role == "user":
            content = []
            for item in msg.content:
                if item["type"] == "text":
                    content.append({"type": "text", "text": item["text"]})
                elif item["type"] == "image":
                    content.append({"type": "image_url", "image_url": {"url": item["image"]}})
                elif item["type"] == "file":
                    content.append(
                        {
                            "type": "file",
                            "file": {"filename": item.get("filename", ""), "file_data": item["data"]},
                        }
                    )
            wire.append({"role": "user", "content": content})

        elif msg.role == "assistant":
            text = "".join(item["text"] for item in msg.content if item["type"] == "text")
            tool_calls = [
                {
                    "id": item["tool_call_id"],
                    "type": "function",
                    "function": {
                        "name": item["tool_name"],
                        "arguments": json.dumps(item.get("args") or {}),
                    },
                }
                for item in msg.content
                if item["type"] == "tool-call"
            ]
            entry: dict[str, Any] = {"role": "assistant", "content": text or None}
            if tool_calls:
                entry["tool_calls"] = tool_calls
            if entry["content"] is None and not tool_calls:
                continue
            wire.append(entry)

        elif msg.role == "tool":
            for item in msg.content:
                if item["type"] != "tool-result":
                    continue
                wire.append(
                    {
                        "role": "tool",
                        "tool_call_id": item["tool_call_id"],
                        "content": json.dumps(item.get("result")),
                    }
                )
    return wire


def to_openai_tools(tools: list[ToolSpec]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
        }
        for tool in tools
    ]


class OpenAICompatibleModel:
    """Streams one generation step from an OpenAI-compatible endpoint."""

    def __init__(
        self,
        model_id: str,
        base_url: str,
        api_key: str,
        timeout: float | None = None,
    ):
        self.model_id = model_id
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout or settings.request_timeout

    def _build_payload(
        self,
        messages: list[ProviderMessage],
        tools: list[ToolSpec],
        options: GenerationOptions,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model_id,
            "messages": to_openai_messages(messages, options.system),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            payload["tools"] = to_openai_tools(tools)
        if options.reasoning_effort:
            payload["reasoning_effort"] = options.reasoning_effort
        payload.update(options.extra)
        return payload

    async def stream_step(
        self,
        messages: list[ProviderMessage],
        tools: list[ToolSpec],
        options: GenerationOptions,
        abort: asyncio.Event,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one completion, yielding provider-neutral events.

        Tool call arguments arrive in fragments keyed by index; they are
        reassembled and emitted as complete ToolCall events once the
        completion ends.
        """
        payload = self._build_payload(messages, tools, options)
        pending_calls: dict[int, dict[str, str]] = {}
        finish_reason = "stop"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=payload,
                ) as response:
                    if response.status_code >= 400:
                        body = await response.aread()
                        raise ProviderError(
                            f"HTTP {response.status_code} from {self.model_id}: {body.decode(errors='replace')[:500]}"
                        )

                    async for line in response.aiter_lines():
                        if abort.is_set():
                            break
                        if not line.startswith("data: "):
                            continue
                        data = line[6:]
                        if data == "[DONE]":
                            break
                        try:
                            chunk = json.loads(data)
                        except json.JSONDecodeError:
                            continue

                        usage = chunk.get("usage")
                        if usage:
                            details = usage.get("completion_tokens_details") or {}
                            yield Usage(
                                prompt_tokens=usage.get("prompt_tokens") or 0,
                                completion_tokens=usage.get("completion_tokens") or 0,
                                reasoning_tokens=details.get("reasoning_tokens") or 0,
                            )

                        for choice in chunk.get("choices") or []:
                            delta = choice.get("delta") or {}
                            reasoning = delta.get("reasoning") or delta.get("reasoning_content")
                            if reasoning:
                                yield ReasoningDelta(text=reasoning)
                            if delta.get("content"):
                                yield TextDelta(text=delta["content"])
                            for call_delta in delta.get("tool_calls") or []:
                                for event in self._merge_tool_call_delta(pending_calls, call_delta):
                                    yield event
                            if choice.get("finish_reason"):
                                finish_reason = choice["finish_reason"]
            except httpx.RequestError as e:
                raise ProviderError(f"Request to {self.model_id} failed: {e}") from e

        for call in pending_calls.values():
            try:
                args = json.loads(call["arguments"]) if call["arguments"] else {}
            except json.JSONDecodeError:
                logger.warning(f"Unparseable arguments for tool call {call['id']}: {call['arguments'][:200]}")
                args = {}
            yield ToolCall(tool_call_id=call["id"], tool_name=call["name"], args=args)

        yield StepFinish(
            step=0,
            finish_reason="tool-calls" if finish_reason == "tool_calls" else finish_reason,
        )

    def _merge_tool_call_delta(
        self, pending_calls: dict[int, dict[str, str]], call_delta: dict[str, Any]
    ) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        index = call_delta.get("index", 0)
        function = call_delta.get("function") or {}

        call = pending_calls.get(index)
        if call is None:
            call = {
                "id": call_delta.get("id") or f"call_{index}",
                "name": function.get("name") or "",
                "arguments": "",
            }
            pending_calls[index] = call
            events.append(ToolCallStreamingStart(tool_call_id=call["id"], tool_name=call["name"]))

        fragment = function.get("arguments") or ""
        if fragment:
            call["arguments"] += fragment
            events.append(
                ToolCallDelta(
                    tool_call_id=call["id"],
                    tool_name=call["name"],
                    args_text_delta=fragment,
                )
            )
        return events
