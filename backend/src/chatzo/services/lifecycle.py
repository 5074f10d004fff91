"""Thread and message lifecycle helpers.

Covers the live-streaming flag transitions and the turn preparation that runs
before a response is generated: creating a thread, appending a message pair,
or truncating a thread for edit/retry.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from chatzo_models import ContentPart, Message, new_message_id
from chatzo.errors import ChatError

logger = logging.getLogger(__name__)

EditMode = Literal["normal", "edit", "retry"]


@dataclass
class TruncationPlan:
    """Outcome of truncating a thread at a target message."""

    target: Message
    kept: list[Message]
    removed: list[Message]
    assistant_message_id: str


@dataclass
class PreparedTurn:
    """Identifiers for the turn about to be generated."""

    thread_id: str
    user_message_id: str
    assistant_message_id: str
    is_new_thread: bool = False


def plan_truncation(
    messages: list[Message],
    target_message_id: str,
    proposed_assistant_id: str,
) -> TruncationPlan | None:
    """Decide which messages survive an edit/retry from `target_message_id`.

    `messages` are the live messages of the thread, oldest first. Everything
    after the target is removed. The first removed assistant message lends its
    id to the new placeholder so the client can keep its optimistic UI bound
    to it. Returns None when the target is not among `messages`.
    """
    index = next(
        (i for i, msg in enumerate(messages) if msg.id == target_message_id),
        None,
    )
    if index is None:
        return None

    removed = messages[index + 1 :]
    previous_assistant = next((m for m in removed if m.role == "assistant"), None)
    return TruncationPlan(
        target=messages[index],
        kept=messages[: index + 1],
        removed=removed,
        assistant_message_id=(
            previous_assistant.id if previous_assistant else proposed_assistant_id
        ),
    )


async def prepare_turn(
    store,
    user_id: str,
    parts: list[ContentPart],
    thread_id: str | None = None,
    user_message_id: str | None = None,
    proposed_assistant_id: str | None = None,
    edit_from_message_id: str | None = None,
    edit_mode: EditMode | None = None,
) -> PreparedTurn:
    """Create or extend a thread with a user message and an empty assistant placeholder."""
    if edit_from_message_id and not thread_id:
        raise ChatError("bad_request:chat", "Editing requires an existing thread.")

    assistant_id = proposed_assistant_id or new_message_id()

    if not thread_id:
        user_message = Message(
            id=user_message_id or new_message_id(),
            thread_id="",
            role="user",
            parts=parts,
        )
        thread = await store.create_thread_with_messages(
            user_id=user_id,
            user_message=user_message,
            assistant_message_id=assistant_id,
        )
        logger.info(f"Created thread {thread.id} for user {user_id}")
        return PreparedTurn(
            thread_id=thread.id,
            user_message_id=user_message.id,
            assistant_message_id=assistant_id,
            is_new_thread=True,
        )

    thread = await store.get_thread(thread_id)
    if not thread:
        raise ChatError("not_found:chat")
    if thread.user_id != user_id:
        raise ChatError("forbidden:chat")

    if edit_from_message_id:
        assistant_id = await store.truncate_for_edit(
            thread_id=thread_id,
            target_message_id=edit_from_message_id,
            replacement_parts=parts if edit_mode == "edit" else None,
            proposed_assistant_id=assistant_id,
        )
        logger.info(
            f"Truncated thread {thread_id} after {edit_from_message_id} "
            f"(mode={edit_mode or 'normal'}, assistant={assistant_id})"
        )
        return PreparedTurn(
            thread_id=thread_id,
            user_message_id=edit_from_message_id,
            assistant_message_id=assistant_id,
        )

    user_message = Message(
        id=user_message_id or new_message_id(),
        thread_id=thread_id,
        role="user",
        parts=parts,
    )
    await store.insert_turn(
        thread_id=thread_id,
        user_message=user_message,
        assistant_message_id=assistant_id,
    )
    return PreparedTurn(
        thread_id=thread_id,
        user_message_id=user_message.id,
        assistant_message_id=assistant_id,
    )


async def mark_streaming(store, thread_id: str, stream_id: str) -> None:
    """Flag the thread as having a response in flight."""
    await store.set_thread_streaming(
        thread_id,
        is_live=True,
        stream_started_at=datetime.now(timezone.utc),
        stream_id=stream_id,
    )


async def clear_streaming(store, thread_id: str) -> bool:
    """Clear the live flag. Returns False when the thread was already idle."""
    thread = await store.get_thread(thread_id)
    if not thread:
        logger.error(f"Thread {thread_id} not found while clearing streaming state")
        return False
    if not thread.is_live:
        return False
    await store.set_thread_streaming(thread_id, is_live=False)
    return True
