"""Shared fakes for the chat pipeline tests."""

import asyncio
from datetime import datetime, timezone

import pytest

from chatzo_models import Message, ModelDescriptor, Thread, User
from chatzo.errors import ChatError
from chatzo.providers.base import GeneratedImage
from chatzo.providers.registry import ResolvedModel
from chatzo.services.lifecycle import plan_truncation


class FakeStore:
    """In-memory store with the same interface as `chatzo.db.Database`."""

    def __init__(self):
        self.users: dict[str, User] = {}
        self.threads: dict[str, Thread] = {}
        self.messages: dict[str, list[Message]] = {}
        self.versions: dict[str, int] = {}
        self.patches: list[tuple[str, list]] = []
        self.streaming_calls: list[bool] = []

    def add_user(self, external_id: str) -> User:
        user = User(external_id=external_id)
        self.users[external_id] = user
        return user

    def add_thread(self, user_id: str, messages: list[Message] | None = None) -> Thread:
        thread = Thread(user_id=user_id)
        self.threads[thread.id] = thread
        self.versions[thread.id] = 0
        self.messages[thread.id] = []
        for msg in messages or []:
            self.messages[thread.id].append(msg.model_copy(update={"thread_id": thread.id}))
        return thread

    def live(self, thread_id: str) -> list[Message]:
        return [m for m in self.messages.get(thread_id, []) if not m.is_deleted]

    # ============= Users =============

    async def get_user_by_external_id(self, external_id: str) -> User | None:
        return self.users.get(external_id)

    # ============= Threads =============

    async def create_thread_with_messages(
        self, user_id: str, user_message: Message, assistant_message_id: str
    ) -> Thread:
        thread = self.add_thread(user_id)
        await self.insert_turn(thread.id, user_message, assistant_message_id)
        return thread

    async def insert_turn(
        self, thread_id: str, user_message: Message, assistant_message_id: str
    ) -> None:
        self.messages[thread_id].append(user_message.model_copy(update={"thread_id": thread_id}))
        self.messages[thread_id].append(
            Message(id=assistant_message_id, thread_id=thread_id, role="assistant")
        )

    async def get_thread(self, thread_id: str) -> Thread | None:
        thread = self.threads.get(thread_id)
        return thread.model_copy() if thread else None

    async def list_threads(self, user_id: str, limit: int = 50, offset: int = 0) -> list[Thread]:
        threads = [t for t in self.threads.values() if t.user_id == user_id]
        threads.sort(key=lambda t: (not t.pinned, -t.updated_at.timestamp()))
        return threads[offset : offset + limit]

    async def search_threads(self, user_id: str, query: str, limit: int = 20) -> list[Thread]:
        return [
            t
            for t in self.threads.values()
            if t.user_id == user_id and query.lower() in t.title.lower()
        ][:limit]

    async def update_thread_title(self, thread_id: str, title: str) -> None:
        self.threads[thread_id].title = title

    async def set_thread_pinned(self, thread_id: str, pinned: bool) -> None:
        self.threads[thread_id].pinned = pinned

    async def delete_thread(self, thread_id: str) -> None:
        self.threads.pop(thread_id, None)
        self.messages.pop(thread_id, None)

    async def set_thread_streaming(
        self,
        thread_id: str,
        is_live: bool,
        stream_started_at: datetime | None = None,
        stream_id: str | None = None,
    ) -> None:
        current = self.threads[thread_id]
        self.threads[thread_id] = Thread(
            **{
                **current.model_dump(),
                "is_live": is_live,
                "stream_started_at": stream_started_at,
                "current_stream_id": stream_id,
            }
        )
        self.streaming_calls.append(is_live)

    # ============= Messages =============

    async def get_messages(self, thread_id: str) -> list[Message]:
        return [m.model_copy(deep=True) for m in self.live(thread_id)]

    async def get_message(self, thread_id: str, message_id: str) -> Message | None:
        return next((m for m in self.live(thread_id) if m.id == message_id), None)

    async def patch_message(self, thread_id, message_id, parts, metadata=None) -> None:
        message = await self.get_message(thread_id, message_id)
        assert message is not None, f"message {message_id} not found"
        message.parts = [p.model_copy(deep=True) for p in parts]
        if metadata is not None:
            message.metadata = metadata
        self.patches.append((message_id, message.parts))

    async def truncate_for_edit(
        self, thread_id, target_message_id, replacement_parts, proposed_assistant_id
    ) -> str:
        plan = plan_truncation(self.live(thread_id), target_message_id, proposed_assistant_id)
        if plan is None:
            exists = any(m.id == target_message_id for m in self.messages[thread_id])
            raise ChatError("conflict:chat" if exists else "not_found:message")
        for message in plan.removed:
            message.is_deleted = True
        if replacement_parts is not None:
            plan.target.parts = list(replacement_parts)
            plan.target.edited = True
            plan.target.edited_at = datetime.now(timezone.utc)
        self.versions[thread_id] += 1
        self.messages[thread_id].append(
            Message(id=plan.assistant_message_id, thread_id=thread_id, role="assistant")
        )
        return plan.assistant_message_id

    async def soft_delete_messages_after(self, thread_id: str, message_id: str) -> int:
        live = self.live(thread_id)
        index = next((i for i, m in enumerate(live) if m.id == message_id), None)
        if index is None:
            raise ChatError("not_found:message")
        for message in live[index + 1 :]:
            message.is_deleted = True
        return len(live) - index - 1


class FakeLanguageModel:
    """Replays scripted events, one list per generation step.

    An exception instance in a script is raised at that point.
    """

    def __init__(self, steps, model_id: str = "fake-model", on_step=None):
        self.steps = list(steps)
        self.model_id = model_id
        self.on_step = on_step
        self.calls: list[dict] = []

    async def stream_step(self, messages, tools, options, abort):
        index = len(self.calls)
        self.calls.append(
            {
                "messages": list(messages),
                "tools": [t.name for t in tools],
                "options": options,
                "aborted": abort.is_set(),
            }
        )
        if self.on_step is not None:
            await self.on_step(index)
        for event in self.steps[index] if index < len(self.steps) else []:
            if isinstance(event, Exception):
                raise event
            await asyncio.sleep(0)
            yield event


class FakeImageModel:
    def __init__(self, images=None, error: Exception | None = None, model_id: str = "fake-image"):
        self.images = images if images is not None else [GeneratedImage(data=b"png-bytes")]
        self.error = error
        self.model_id = model_id
        self.calls: list[dict] = []

    async def generate(self, prompt, size=None, aspect_ratio=None):
        self.calls.append({"prompt": prompt, "size": size, "aspect_ratio": aspect_ratio})
        if self.error:
            raise self.error
        return self.images


class FakeMediaStore:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: list[str] = []

    async def upload(self, data: bytes, mime_type: str, public_id: str) -> str:
        await asyncio.sleep(0)
        if self.fail:
            raise RuntimeError("storage unavailable")
        self.uploads.append(public_id)
        return f"https://media.test/{public_id}"


class RecordingWriter:
    """Collects frames instead of streaming them."""

    def __init__(self):
        self.frames = []
        self.detached = False

    async def write(self, frame) -> None:
        self.frames.append(frame)

    async def write_all(self, frames) -> None:
        for frame in frames:
            await self.write(frame)

    def of_type(self, code: str) -> list:
        return [f for f in self.frames if f.type.value == code]


TEXT_MODEL = ModelDescriptor(
    id="fake-model",
    name="Fake Model",
    provider="openrouter",
    abilities=["function_calling", "reasoning"],
)

IMAGE_MODEL = ModelDescriptor(
    id="fake-image",
    name="Fake Image",
    provider="openai",
    mode="image",
    supported_image_sizes=["1024x1024", "1536x1024"],
)


def resolved_text(model: FakeLanguageModel, descriptor: ModelDescriptor = TEXT_MODEL) -> ResolvedModel:
    return ResolvedModel(descriptor=descriptor, language_model=model)


def resolved_image(model: FakeImageModel) -> ResolvedModel:
    return ResolvedModel(descriptor=IMAGE_MODEL, image_model=model)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def user(store: FakeStore) -> User:
    return store.add_user("clerk_test")


@pytest.fixture
def media_store() -> FakeMediaStore:
    return FakeMediaStore()
