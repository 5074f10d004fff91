"""Fold provider events into message parts and client frames.

`PartAccumulator.apply` is the only place that mutates the part list while a
response streams. Parts keep the order their events were observed in; a tool
call moving to a later state is updated in place.
"""

import asyncio
import base64
import logging
import time
import uuid
from typing import Callable

from chatzo.protocol import FrameType, StreamFrame
from chatzo.providers.base import (
    FileEvent,
    ReasoningDelta,
    StepFinish,
    StepStart,
    StreamEvent,
    TextDelta,
    ToolCall,
    ToolCallDelta,
    ToolCallStreamingStart,
    ToolResult,
    Usage,
)
from chatzo.services.background import spawn_background
from chatzo_models import (
    ContentPart,
    ErrorInfo,
    ErrorPart,
    FilePart,
    ReasoningPart,
    TextPart,
    TokenUsage,
    ToolInvocation,
    ToolInvocationPart,
)

logger = logging.getLogger(__name__)


def _usage_payload(usage: TokenUsage) -> dict[str, int]:
    return {"promptTokens": usage.prompt_tokens, "completionTokens": usage.completion_tokens}


class PartAccumulator:
    """Owns the part list of one assistant message while it streams."""

    def __init__(
        self,
        message_id: str,
        media_store=None,
        upload_prefix: str = "generations",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.message_id = message_id
        self.parts: list[ContentPart] = []
        self.usage = TokenUsage()
        self.media_store = media_store
        self.upload_prefix = upload_prefix
        self._clock = clock
        self._step = 0
        self._step_usage = TokenUsage()
        self._reasoning: ReasoningPart | None = None
        self._reasoning_started_at: float | None = None
        self._uploads: list[asyncio.Task] = []

    # ============= Reducer =============

    def apply(self, event: StreamEvent) -> list[StreamFrame]:
        """Fold one event into the part list and return the frames to forward."""
        if not isinstance(event, (ReasoningDelta, Usage)):
            self._close_reasoning()

        if isinstance(event, TextDelta):
            last = self.parts[-1] if self.parts else None
            if isinstance(last, TextPart):
                last.text += event.text
            else:
                self.parts.append(TextPart(text=event.text))
            return [StreamFrame(FrameType.TEXT, event.text)]

        if isinstance(event, ReasoningDelta):
            last = self.parts[-1] if self.parts else None
            if isinstance(last, ReasoningPart):
                last.text += event.text
                if self._reasoning is None:
                    # Continuing a closed run; its duration keeps accumulating
                    self._reasoning = last
                    self._reasoning_started_at = self._clock()
            else:
                self._reasoning = ReasoningPart(text=event.text)
                self._reasoning_started_at = self._clock()
                self.parts.append(self._reasoning)
            return [StreamFrame(FrameType.REASONING, event.text)]

        if isinstance(event, ToolCallStreamingStart):
            if self._find_invocation(event.tool_call_id) is not None:
                return []
            self.parts.append(
                ToolInvocationPart(
                    tool_invocation=ToolInvocation(
                        state="partial-call",
                        tool_call_id=event.tool_call_id,
                        tool_name=event.tool_name,
                        step=self._step,
                    )
                )
            )
            return [
                StreamFrame(
                    FrameType.TOOL_CALL_STREAMING_START,
                    {"toolCallId": event.tool_call_id, "toolName": event.tool_name},
                )
            ]

        if isinstance(event, ToolCallDelta):
            invocation = self._find_invocation(event.tool_call_id)
            if invocation is None or invocation.state != "partial-call":
                logger.warning(f"Argument delta for unknown tool call {event.tool_call_id}")
                return []
            invocation.args = (invocation.args or "") + event.args_text_delta
            return [
                StreamFrame(
                    FrameType.TOOL_CALL_DELTA,
                    {"toolCallId": event.tool_call_id, "argsTextDelta": event.args_text_delta},
                )
            ]

        if isinstance(event, ToolCall):
            invocation = self._find_invocation(event.tool_call_id)
            if invocation is None:
                self.parts.append(
                    ToolInvocationPart(
                        tool_invocation=ToolInvocation(
                            state="call",
                            tool_call_id=event.tool_call_id,
                            tool_name=event.tool_name,
                            args=event.args,
                            step=self._step,
                        )
                    )
                )
            elif invocation.can_transition("call"):
                invocation.state = "call"
                invocation.args = event.args
            else:
                logger.warning(f"Ignoring repeated tool call {event.tool_call_id}")
                return []
            return [
                StreamFrame(
                    FrameType.TOOL_CALL,
                    {
                        "toolCallId": event.tool_call_id,
                        "toolName": event.tool_name,
                        "args": event.args,
                    },
                )
            ]

        if isinstance(event, ToolResult):
            invocation = self._find_invocation(event.tool_call_id)
            if invocation is None:
                logger.error(f"Tool result for unknown call {event.tool_call_id} ({event.tool_name})")
                return []
            if not invocation.can_transition("result"):
                logger.warning(
                    f"Ignoring result for tool call {event.tool_call_id} in state {invocation.state}"
                )
                return []
            invocation.state = "result"
            invocation.result = event.result
            return [
                StreamFrame(
                    FrameType.TOOL_RESULT,
                    {"toolCallId": event.tool_call_id, "result": event.result},
                )
            ]

        if isinstance(event, FileEvent):
            return self._add_file(event)

        if isinstance(event, StepStart):
            self._step = event.step
            self._step_usage = TokenUsage()
            return [StreamFrame(FrameType.START_STEP, {"messageId": self.message_id})]

        if isinstance(event, StepFinish):
            return [
                StreamFrame(
                    FrameType.FINISH_STEP,
                    {
                        "finishReason": event.finish_reason,
                        "usage": _usage_payload(self._step_usage),
                        "isContinued": event.is_continued,
                    },
                )
            ]

        if isinstance(event, Usage):
            for usage in (self.usage, self._step_usage):
                usage.add(event.prompt_tokens, event.completion_tokens, event.reasoning_tokens)
            return []

        logger.warning(f"Unhandled stream event: {type(event).__name__}")
        return []

    # ============= Helpers =============

    def _find_invocation(self, tool_call_id: str) -> ToolInvocation | None:
        for part in self.parts:
            if (
                isinstance(part, ToolInvocationPart)
                and part.tool_invocation.tool_call_id == tool_call_id
            ):
                return part.tool_invocation
        return None

    def _close_reasoning(self) -> None:
        if self._reasoning is None or self._reasoning_started_at is None:
            return
        elapsed = self._clock() - self._reasoning_started_at
        self._reasoning.duration_ms = (self._reasoning.duration_ms or 0) + int(elapsed * 1000)
        self._reasoning = None
        self._reasoning_started_at = None

    def _add_file(self, event: FileEvent) -> list[StreamFrame]:
        encoded = base64.b64encode(event.data).decode("ascii")
        part = FilePart(mime_type=event.mime_type, filename=event.filename)
        if self.media_store is None:
            part.data = encoded
        else:
            public_id = f"{self.upload_prefix}/{int(time.time())}-{uuid.uuid4().hex[:8]}"
            self._uploads.append(
                spawn_background(self._upload(part, event.data, public_id), name=f"upload-{public_id}")
            )
        self.parts.append(part)
        return [StreamFrame(FrameType.FILE, {"data": encoded, "mimeType": event.mime_type})]

    async def _upload(self, part: FilePart, data: bytes, public_id: str) -> None:
        try:
            part.url = await self.media_store.upload(data, part.mime_type, public_id)
        except Exception as e:
            logger.error(f"Failed to upload generated file {public_id}: {e}")
            index = next(i for i, p in enumerate(self.parts) if p is part)
            self.parts.insert(
                index + 1,
                ErrorPart(error=ErrorInfo(code="upload_error", message=f"Failed to store file: {e}")),
            )

    def record_error(self, code: str, message: str) -> list[StreamFrame]:
        """Append an error part and return the error frame for it."""
        self._close_reasoning()
        self.parts.append(ErrorPart(error=ErrorInfo(code=code, message=message)))
        return [StreamFrame.error(message)]

    # ============= Completion =============

    def finish_frame(self, finish_reason: str = "stop") -> StreamFrame:
        return StreamFrame(
            FrameType.FINISH_MESSAGE,
            {"finishReason": finish_reason, "usage": _usage_payload(self.usage)},
        )

    async def finish(self) -> list[ContentPart]:
        """Close open runs, settle pending uploads, and return the final parts."""
        self._close_reasoning()
        if self._uploads:
            await asyncio.gather(*self._uploads, return_exceptions=True)
            self._uploads.clear()
        return self.parts
