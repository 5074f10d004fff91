"""Background thread title generation."""

import logging

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ResultMessage,
    TextBlock,
    query,
)

from chatzo.config import settings
from chatzo.prompts import FALLBACK_TITLE, TITLE_GENERATION_SYSTEM_PROMPT
from chatzo.services.background import spawn_background

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100


def clean_title(raw: str) -> str:
    """Strip quotes and markup from a model-written title."""
    title = raw.strip().splitlines()[0] if raw.strip() else ""
    title = title.strip().strip("\"'`*#").strip()
    if title.lower().startswith("title:"):
        title = title[len("title:"):].strip()
    if not title:
        return FALLBACK_TITLE
    return title[:MAX_TITLE_LENGTH].rstrip()


async def generate_thread_title(text: str) -> str:
    """Ask the title model for a short title for `text`."""
    options = ClaudeAgentOptions(
        model=settings.title_model,
        system_prompt=TITLE_GENERATION_SYSTEM_PROMPT,
        permission_mode="bypassPermissions",
        max_turns=1,
    )

    collected_text: list[str] = []
    async for msg in query(prompt=f"Conversation:\n{text[:4000]}", options=options):
        if isinstance(msg, AssistantMessage):
            for block in msg.content:
                if isinstance(block, TextBlock):
                    collected_text.append(block.text)
        elif isinstance(msg, ResultMessage):
            if msg.is_error:
                logger.error(f"Title generation error: {msg.result}")
                return FALLBACK_TITLE

    return clean_title("".join(collected_text))


async def _update_title(store, thread_id: str, text: str) -> None:
    try:
        title = await generate_thread_title(text)
        await store.update_thread_title(thread_id, title)
        logger.info(f"Titled thread {thread_id}: {title!r}")
    except Exception as e:
        logger.error(f"Failed to generate title for thread {thread_id}: {e}")


def trigger_title_generation(store, thread_id: str, text: str):
    """Generate and store a title without blocking the caller."""
    return spawn_background(_update_title(store, thread_id, text), name=f"title-{thread_id}")
