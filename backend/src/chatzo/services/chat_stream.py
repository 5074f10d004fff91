"""Stream orchestration for one chat turn.

`ChatStream.execute` runs after the turn has been resolved (thread and
placeholder messages exist). It drives the model, forwards frames to the
client and persists the assistant message exactly once at the end:

    BUILDING_CONTEXT -> GENERATING -> FINALIZING -> DONE
                  \\____________\\_____________\\-> FAILED
"""

import asyncio
import logging
import time
import uuid
from enum import Enum

import httpx

from chatzo_models import (
    ErrorInfo,
    ErrorPart,
    Message,
    MessageMetadata,
    ModelAbility,
    TextPart,
)
from chatzo.config import settings
from chatzo.prompts import build_system_prompt
from chatzo.protocol import FrameWriter, StreamFrame
from chatzo.providers.base import GenerationOptions, ToolCall, ToolResult
from chatzo.providers.registry import ResolvedModel
from chatzo.services.context_builder import TextFetcher, build_provider_messages
from chatzo.services.generation import generate
from chatzo.services.image_generation import generate_and_store_image, resolve_image_size
from chatzo.services.lifecycle import PreparedTurn, clear_streaming, mark_streaming
from chatzo.services.stream_transform import PartAccumulator
from chatzo.services.titles import trigger_title_generation
from chatzo.services.toolkit import ToolContext, get_toolkit

logger = logging.getLogger(__name__)

STREAM_ERROR_MESSAGE = "Stream error occurred"
NO_RESPONSE_MESSAGE = "The model did not generate a response. Please try again."
NO_IMAGE_PROMPT_MESSAGE = (
    "No prompt provided for image generation. "
    "Please provide a description of the image you want to create."
)
DEFAULT_IMAGE_SIZE = "1:1"


class StreamState(str, Enum):
    RESOLVING = "resolving"
    BUILDING_CONTEXT = "building_context"
    GENERATING = "generating"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


def latest_user_text(messages: list[Message]) -> str:
    """Text of the most recent user message, or an empty string."""
    for message in reversed(messages):
        if message.role == "user":
            return " ".join(p.text for p in message.parts if isinstance(p, TextPart)).strip()
    return ""


class ChatStream:
    """Generates and persists the assistant response for a prepared turn."""

    def __init__(
        self,
        store,
        user_id: str,
        turn: PreparedTurn,
        model: ResolvedModel,
        media_store,
        enabled_tools: list[str] | None = None,
        image_size: str | None = None,
        stream_id: str | None = None,
        title_source: str = "",
        fetch_text: TextFetcher | None = None,
    ):
        self.store = store
        self.user_id = user_id
        self.turn = turn
        self.model = model
        self.media_store = media_store
        self.enabled_tools = enabled_tools or []
        self.image_size = image_size
        self.stream_id = stream_id or uuid.uuid4().hex
        self.title_source = title_source
        self.fetch_text = fetch_text

        self.state = StreamState.RESOLVING
        self.abort = asyncio.Event()
        self.accumulator = PartAccumulator(
            turn.assistant_message_id,
            media_store=media_store,
            upload_prefix=f"{settings.cloudinary_generations_folder}/{user_id}",
        )
        self._started_at = time.monotonic()

    @property
    def thread_id(self) -> str:
        return self.turn.thread_id

    def _metadata(self) -> MessageMetadata:
        usage = self.accumulator.usage
        return MessageMetadata(
            model_id=self.model.descriptor.id,
            model_name=self.model.descriptor.name,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            reasoning_tokens=usage.reasoning_tokens,
            server_duration_ms=int((time.monotonic() - self._started_at) * 1000),
        )

    def _end_generation(self) -> None:
        if not self.abort.is_set():
            self.abort.set()

    async def execute(self, writer: FrameWriter) -> None:
        try:
            await mark_streaming(self.store, self.thread_id, self.stream_id)
            await writer.write(StreamFrame.data({"type": "thread_id", "content": self.thread_id}))
            await writer.write(
                StreamFrame.annotation({"type": "model_name", "content": self.model.descriptor.name})
            )

            self.state = StreamState.BUILDING_CONTEXT
            history = await self.store.get_messages(self.thread_id)

            if self.model.is_image:
                self.state = StreamState.GENERATING
                await self._generate_image(writer, history)
            else:
                messages = await build_provider_messages(
                    history, self.model.descriptor.abilities, fetch_text=self.fetch_text
                )
                self.state = StreamState.GENERATING
                await self._generate_text(writer, messages)

            self.state = StreamState.FINALIZING
            await self._finalize(writer)
            self.state = StreamState.DONE
        except Exception as e:
            await self._fail(writer, e)
            return

        if self.turn.is_new_thread:
            trigger_title_generation(self.store, self.thread_id, self.title_source)

    async def _generate_text(self, writer: FrameWriter, messages) -> None:
        descriptor = self.model.descriptor
        options = GenerationOptions(
            system=build_system_prompt(descriptor),
            reasoning_effort="medium" if descriptor.has(ModelAbility.EFFORT_CONTROL) else None,
        )

        # One client per turn, shared by every tool call the model makes
        async with httpx.AsyncClient(timeout=30.0) as http:
            tools = {}
            if descriptor.has(ModelAbility.FUNCTION_CALLING):
                tools = await get_toolkit(
                    ToolContext(enabled_tools=self.enabled_tools, user_id=self.user_id, http=http)
                )

            try:
                async for event in generate(
                    self.model.language_model,
                    messages,
                    tools,
                    options,
                    self.abort,
                    max_steps=settings.max_steps,
                ):
                    await writer.write_all(self.accumulator.apply(event))
            finally:
                self._end_generation()

    def _image_size(self) -> str:
        """The size the image model will actually be asked for."""
        descriptor = self.model.descriptor
        if not descriptor.supported_image_sizes:
            return self.image_size or DEFAULT_IMAGE_SIZE
        if self.image_size is None and DEFAULT_IMAGE_SIZE in descriptor.supported_image_sizes:
            return DEFAULT_IMAGE_SIZE
        return resolve_image_size(descriptor, self.image_size)

    async def _generate_image(self, writer: FrameWriter, history: list[Message]) -> None:
        prompt = latest_user_text(history)
        if not prompt:
            logger.error(f"No valid prompt for image generation in thread {self.thread_id}")
            await writer.write_all(self.accumulator.record_error("bad_request", NO_IMAGE_PROMPT_MESSAGE))
            return

        image_size = self._image_size()
        call = ToolCall(
            tool_call_id=f"call_{uuid.uuid4().hex[:16]}",
            tool_name="image_generation",
            args={"image_size": image_size, "prompt": prompt},
        )
        await writer.write_all(self.accumulator.apply(call))

        # Early flush so a reconnecting client sees the call in progress
        await self.store.patch_message(
            self.thread_id,
            self.turn.assistant_message_id,
            self.accumulator.parts,
            self._metadata(),
        )

        try:
            generated = await generate_and_store_image(
                prompt=prompt,
                model=self.model.descriptor,
                image_model=self.model.image_model,
                media_store=self.media_store,
                user_id=self.user_id,
                image_size=image_size,
            )
            result = generated.to_dict()
        except Exception as e:
            logger.error(f"Image generation failed for thread {self.thread_id}: {e}")
            result = {"error": str(e) or "Unknown error occurred"}
        finally:
            self._end_generation()

        await writer.write_all(
            self.accumulator.apply(
                ToolResult(tool_call_id=call.tool_call_id, tool_name=call.tool_name, result=result)
            )
        )

    async def _finalize(self, writer: FrameWriter) -> None:
        parts = await self.accumulator.finish()
        if not parts:
            parts = [ErrorPart(error=ErrorInfo(code="no-response", message=NO_RESPONSE_MESSAGE))]

        await self.store.patch_message(
            self.thread_id, self.turn.assistant_message_id, parts, self._metadata()
        )
        await writer.write(self.accumulator.finish_frame())
        await clear_streaming(self.store, self.thread_id)
        logger.info(
            f"Finished turn {self.turn.assistant_message_id} in thread {self.thread_id} "
            f"({len(parts)} parts, {self.accumulator.usage.completion_tokens} completion tokens)"
        )

    async def _fail(self, writer: FrameWriter, error: Exception) -> None:
        failed_in = self.state
        self.state = StreamState.FAILED
        self._end_generation()
        logger.error(f"Stream failed in thread {self.thread_id} during {failed_in.value}: {error!r}")

        try:
            parts = await self.accumulator.finish()
            parts.append(
                ErrorPart(error=ErrorInfo(code="stream_fatal", message=STREAM_ERROR_MESSAGE))
            )
            await self.store.patch_message(
                self.thread_id, self.turn.assistant_message_id, parts, self._metadata()
            )
        except Exception as e:
            logger.error(f"Failed to persist partial response in thread {self.thread_id}: {e}")

        try:
            await clear_streaming(self.store, self.thread_id)
        except Exception as e:
            logger.error(f"Failed to update thread state for {self.thread_id}: {e}")

        await writer.write(StreamFrame.error(STREAM_ERROR_MESSAGE))
