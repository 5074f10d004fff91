"""FastAPI application for the streaming chat backend."""

import asyncio
import logging

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware

from chatzo_models import ModelDescriptor, Thread, User
from chatzo.config import settings
from chatzo.db import Database, db
from chatzo.errors import ChatError
from chatzo.models import (
    ChatRequest,
    DeleteMessagesResponse,
    PinThreadRequest,
    RenameThreadRequest,
    ThreadListResponse,
    ThreadResponse,
)
from chatzo.protocol import (
    StreamFrame,
    channel_stream,
    create_stream_response,
    empty_stream,
    single_frame_stream,
)
from chatzo.providers.registry import MODELS, resolve_model
from chatzo.services.background import pending_background_tasks
from chatzo.services.chat_stream import ChatStream
from chatzo.services.lifecycle import prepare_turn
from chatzo.services.media import MediaStore, get_media_store

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Chatzo API",
    description="Streaming multimodal chat backend",
    version="0.1.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Vercel-AI-Data-Stream"],
)


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup."""
    await db.connect()
    await db.ensure_tables_exist()


@app.on_event("shutdown")
async def shutdown_event():
    """Let title and upload jobs settle, then close the pool."""
    pending = pending_background_tasks()
    if pending:
        logger.info(f"Waiting for {len(pending)} background tasks")
        await asyncio.gather(*pending, return_exceptions=True)
    await db.disconnect()


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return await http_exception_handler(request, exc.to_http())


# ============= Dependencies =============


def get_store() -> Database:
    return db


def get_media() -> MediaStore:
    return get_media_store()


def get_model_resolver():
    return resolve_model


async def get_current_user(
    clerk_id: str | None = Header(default=None, alias="X-Clerk-Id"),
    store: Database = Depends(get_store),
) -> User:
    """Resolve the caller's identity token to a user."""
    if not clerk_id:
        raise ChatError("unauthorized:chat")
    user = await store.get_user_by_external_id(clerk_id)
    if not user:
        raise ChatError("unauthorized:chat")
    return user


async def _get_owned_thread(store: Database, thread_id: str, user: User) -> Thread:
    thread = await store.get_thread(thread_id)
    if not thread:
        raise ChatError("not_found:thread")
    if thread.user_id != user.id:
        raise ChatError("forbidden:thread")
    return thread


# ============= Health & Info =============


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/models", response_model=list[ModelDescriptor])
async def list_models():
    """The model catalogue with abilities."""
    return MODELS


# ============= Chat Endpoints =============


@app.post("/chat")
async def post_chat(
    request: ChatRequest,
    user: User = Depends(get_current_user),
    store: Database = Depends(get_store),
    media_store: MediaStore = Depends(get_media),
    resolver=Depends(get_model_resolver),
):
    """Stream the assistant response for one new user message."""
    if request.edit_from_message_id and not request.thread_id:
        raise ChatError("bad_request:chat", "editFromMessageId requires threadId.")

    model = resolver(request.model)

    turn = await prepare_turn(
        store,
        user_id=user.id,
        parts=request.message.parts,
        thread_id=request.thread_id,
        user_message_id=request.message.message_id,
        proposed_assistant_id=request.proposed_assistant_id,
        edit_from_message_id=request.edit_from_message_id,
        edit_mode=request.edit_mode,
    )

    chat_stream = ChatStream(
        store,
        user_id=user.id,
        turn=turn,
        model=model,
        media_store=media_store,
        enabled_tools=request.enabled_tools,
        image_size=request.image_size,
        stream_id=request.stream_id,
        title_source=request.message.text(),
    )
    logger.info(
        f"Streaming {model.descriptor.id} turn {turn.assistant_message_id} in thread {turn.thread_id}"
    )
    return create_stream_response(
        channel_stream(chat_stream.execute, buffer_size=settings.stream_buffer_size)
    )


@app.get("/chat")
async def resume_chat(
    chat_id: str = Query(..., alias="chatId"),
    user: User = Depends(get_current_user),
    store: Database = Depends(get_store),
):
    """Replay the last assistant message of a thread for a reconnecting client."""
    thread = await store.get_thread(chat_id)
    if not thread:
        raise ChatError("not_found:chat")
    if thread.user_id != user.id:
        raise ChatError("forbidden:chat")

    messages = await store.get_messages(chat_id)
    if not messages or messages[-1].role != "assistant":
        return create_stream_response(empty_stream())

    frame = StreamFrame.data(
        {"type": "append-message", "message": messages[-1].model_dump_json()}
    )
    return create_stream_response(single_frame_stream(frame))


# ============= Thread Endpoints =============


@app.get("/threads", response_model=ThreadListResponse)
async def list_threads(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    store: Database = Depends(get_store),
):
    """List the caller's threads, pinned first."""
    threads = await store.list_threads(user.id, limit=limit, offset=offset)
    return ThreadListResponse(threads=threads, total=len(threads))


@app.get("/threads/search", response_model=ThreadListResponse)
async def search_threads(
    q: str = Query(..., min_length=1),
    user: User = Depends(get_current_user),
    store: Database = Depends(get_store),
):
    """Search the caller's threads by title."""
    threads = await store.search_threads(user.id, q)
    return ThreadListResponse(threads=threads, total=len(threads))


@app.get("/threads/{thread_id}", response_model=ThreadResponse)
async def get_thread(
    thread_id: str,
    user: User = Depends(get_current_user),
    store: Database = Depends(get_store),
):
    """Get a thread with its messages."""
    thread = await _get_owned_thread(store, thread_id, user)
    messages = await store.get_messages(thread_id)
    return ThreadResponse(thread=thread, messages=messages)


@app.patch("/threads/{thread_id}", response_model=Thread)
async def rename_thread(
    thread_id: str,
    request: RenameThreadRequest,
    user: User = Depends(get_current_user),
    store: Database = Depends(get_store),
):
    """Rename a thread."""
    title = request.title.strip()
    if not title or len(title) > 100:
        raise ChatError("bad_request:thread", "Title must be between 1 and 100 characters.")

    await _get_owned_thread(store, thread_id, user)
    await store.update_thread_title(thread_id, title)
    return await store.get_thread(thread_id)


@app.post("/threads/{thread_id}/pin", response_model=Thread)
async def pin_thread(
    thread_id: str,
    request: PinThreadRequest | None = None,
    user: User = Depends(get_current_user),
    store: Database = Depends(get_store),
):
    """Pin or unpin a thread. Toggles when no value is given."""
    thread = await _get_owned_thread(store, thread_id, user)
    pinned = request.pinned if request and request.pinned is not None else not thread.pinned
    await store.set_thread_pinned(thread_id, pinned)
    return await store.get_thread(thread_id)


@app.delete("/threads/{thread_id}")
async def delete_thread(
    thread_id: str,
    user: User = Depends(get_current_user),
    store: Database = Depends(get_store),
):
    """Delete a thread and its messages."""
    await _get_owned_thread(store, thread_id, user)
    await store.delete_thread(thread_id)
    return {"status": "deleted", "thread_id": thread_id}


# ============= Message Endpoints =============


@app.get("/threads/{thread_id}/messages")
async def list_messages(
    thread_id: str,
    user: User = Depends(get_current_user),
    store: Database = Depends(get_store),
):
    """Get the live messages of a thread, oldest first."""
    await _get_owned_thread(store, thread_id, user)
    return await store.get_messages(thread_id)


@app.get("/threads/{thread_id}/messages/{message_id}")
async def get_message(
    thread_id: str,
    message_id: str,
    user: User = Depends(get_current_user),
    store: Database = Depends(get_store),
):
    """Get a single message."""
    await _get_owned_thread(store, thread_id, user)
    message = await store.get_message(thread_id, message_id)
    if not message:
        raise ChatError("not_found:message")
    return message


@app.delete("/threads/{thread_id}/messages", response_model=DeleteMessagesResponse)
async def delete_messages_after(
    thread_id: str,
    after: str = Query(..., description="Soft-delete every message after this one"),
    user: User = Depends(get_current_user),
    store: Database = Depends(get_store),
):
    """Soft-delete every message after `after`."""
    await _get_owned_thread(store, thread_id, user)
    deleted = await store.soft_delete_messages_after(thread_id, after)
    return DeleteMessagesResponse(deleted=deleted)


# ============= Run =============


def run():
    """Run the application."""
    import uvicorn

    uvicorn.run(
        "chatzo.api:app",
        host=settings.host,
        port=settings.port,
        reload=True,
    )


if __name__ == "__main__":
    run()
