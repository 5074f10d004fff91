"""Data stream protocol frames and the buffered response channel.

Each frame is one line, ``<code>:<json>\\n``, following the AI SDK data
stream protocol that the mobile client consumes.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncGenerator, Awaitable, Callable

from fastapi.responses import StreamingResponse

from chatzo.services.background import spawn_background

logger = logging.getLogger(__name__)


class FrameType(str, Enum):
    """Frame type -> protocol code."""

    TEXT = "0"
    DATA = "2"
    ERROR = "3"
    MESSAGE_ANNOTATIONS = "8"
    TOOL_CALL = "9"
    TOOL_RESULT = "a"
    TOOL_CALL_STREAMING_START = "b"
    TOOL_CALL_DELTA = "c"
    FINISH_MESSAGE = "d"
    FINISH_STEP = "e"
    START_STEP = "f"
    REASONING = "g"
    FILE = "k"


@dataclass
class StreamFrame:
    """A frame to send to the client."""

    type: FrameType
    value: Any

    def encode(self) -> str:
        return f"{self.type.value}:{json.dumps(self.value, separators=(',', ':'))}\n"

    @classmethod
    def data(cls, payload: dict[str, Any]) -> "StreamFrame":
        return cls(FrameType.DATA, [payload])

    @classmethod
    def annotation(cls, payload: dict[str, Any]) -> "StreamFrame":
        return cls(FrameType.MESSAGE_ANNOTATIONS, [payload])

    @classmethod
    def error(cls, message: str) -> "StreamFrame":
        return cls(FrameType.ERROR, message)


class FrameWriter:
    """Producer side of the response channel.

    Once the client goes away the writer is detached and frames are dropped,
    so the producer can run to completion without a reader.
    """

    def __init__(self, queue: asyncio.Queue):
        self._queue = queue
        self.detached = False

    async def write(self, frame: StreamFrame) -> None:
        if self.detached:
            return
        await self._queue.put(frame.encode())

    async def write_all(self, frames: list[StreamFrame]) -> None:
        for frame in frames:
            await self.write(frame)

    async def close(self) -> None:
        if self.detached:
            return
        await self._queue.put(None)

    def detach(self) -> None:
        self.detached = True
        # Unblock a producer waiting on a full queue
        while not self._queue.empty():
            self._queue.get_nowait()


async def channel_stream(
    execute: Callable[[FrameWriter], Awaitable[None]],
    buffer_size: int = 64,
) -> AsyncGenerator[str, None]:
    """Run `execute` as a producer task and yield the frames it writes.

    The queue is bounded, so a slow client slows the producer down. The
    producer is not cancelled if the client disconnects.
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_size)
    writer = FrameWriter(queue)

    async def _produce() -> None:
        try:
            await execute(writer)
        except Exception as e:
            logger.error(f"Stream producer failed: {e!r}")
            await writer.write(StreamFrame.error("Stream error occurred"))
        finally:
            await writer.close()

    spawn_background(_produce(), name="chat-stream-producer")

    try:
        while True:
            chunk = await queue.get()
            if chunk is None:
                break
            yield chunk
    finally:
        writer.detach()


async def empty_stream() -> AsyncGenerator[str, None]:
    """A stream with no frames."""
    return
    yield  # pragma: no cover


async def single_frame_stream(frame: StreamFrame) -> AsyncGenerator[str, None]:
    yield frame.encode()


def create_stream_response(generator: AsyncGenerator[str, None]) -> StreamingResponse:
    """Create a data stream StreamingResponse."""
    return StreamingResponse(
        generator,
        media_type="text/plain; charset=utf-8",
        headers={
            "X-Vercel-AI-Data-Stream": "v1",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
