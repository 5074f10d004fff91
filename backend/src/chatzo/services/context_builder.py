"""Convert stored thread history into provider messages.

Attachment problems never fail the build: an attachment that cannot be sent
is replaced by an ``<internal-system-error>`` text marker so the rest of the
conversation stays sendable.
"""

import logging
from typing import Any, Awaitable, Callable

import httpx

from chatzo.providers.base import ProviderMessage
from chatzo.services.file_types import get_file_type_info, is_image_mime_type
from chatzo_models import (
    ErrorPart,
    FilePart,
    Message,
    ModelAbility,
    ReasoningPart,
    TextPart,
    ToolInvocationPart,
)

logger = logging.getLogger(__name__)

TextFetcher = Callable[[str], Awaitable[str]]

# Stored attachment keys look like "attachments/<51-char prefix><original name>"
_ATTACHMENT_PREFIX = "attachments/"
_ATTACHMENT_KEY_PREFIX_LEN = 51


async def fetch_text_file(url: str) -> str:
    """Download a text attachment."""
    async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as client:
        response = await client.get(url)
        response.raise_for_status()
        return response.text


def _error_marker(text: str) -> dict[str, Any]:
    return {"type": "text", "text": f"<internal-system-error>{text}</internal-system-error>"}


def _failed_fetch(kind: str, filename: str) -> dict[str, Any]:
    return _error_marker(
        f"Failed to fetch {kind} file {filename}. "
        "Maybe there was an issue or the file was deleted."
    )


def _is_remote(url: str | None) -> bool:
    return bool(url) and url.startswith("http")


def attachment_filename(part: FilePart) -> str:
    """Name of an attachment, derived from its storage key when unset."""
    if part.filename:
        return part.filename
    location = part.url or ""
    if not location.startswith(_ATTACHMENT_PREFIX):
        return ""
    name = location.rsplit("/", 1)[-1]
    if len(name) > _ATTACHMENT_KEY_PREFIX_LEN:
        name = name[_ATTACHMENT_KEY_PREFIX_LEN:]
    return name


async def _map_user_file(
    part: FilePart,
    abilities: set[ModelAbility],
    fetch_text: TextFetcher,
) -> dict[str, Any]:
    filename = attachment_filename(part)
    info = get_file_type_info(filename, part.mime_type)

    if info.is_image and is_image_mime_type(part.mime_type or ""):
        if _is_remote(part.url):
            return {"type": "image", "image": part.url}
        return _failed_fetch("image", filename)

    if info.is_text and not info.is_image:
        if not _is_remote(part.url):
            return _failed_fetch("text", filename)
        try:
            text = await fetch_text(part.url)
        except Exception as e:
            logger.warning(f"Failed to fetch text file {part.url}: {e}")
            return _failed_fetch("text", filename)
        return {"type": "text", "text": f'<file name="{filename}">\n{text}\n</file>'}

    if info.is_pdf and ModelAbility.PDF in abilities:
        if _is_remote(part.url):
            return {
                "type": "file",
                "mime_type": "application/pdf",
                "filename": filename,
                "data": part.url,
            }
        return _failed_fetch("pdf", filename)

    if info.is_pdf:
        return _error_marker(
            "PDF files are not supported by this model. "
            "Please try again with a different model."
        )
    return _error_marker(f"Unsupported file type: {filename} ({part.mime_type})")


async def _map_user_message(
    message: Message, abilities: set[ModelAbility], fetch_text: TextFetcher
) -> list[dict[str, Any]]:
    content: list[dict[str, Any]] = []
    for part in message.parts:
        if isinstance(part, TextPart):
            content.append({"type": "text", "text": part.text})
        elif isinstance(part, FilePart):
            content.append(await _map_user_file(part, abilities, fetch_text))
    return content


def _map_assistant_message(
    message: Message, abilities: set[ModelAbility]
) -> tuple[list[dict[str, Any]], list[dict[str, Any]], list[dict[str, Any]]]:
    """Split an assistant message into (content, tool calls, tool results)."""
    content: list[dict[str, Any]] = []
    calls: list[dict[str, Any]] = []
    results: list[dict[str, Any]] = []

    for part in message.parts:
        if isinstance(part, TextPart):
            content.append({"type": "text", "text": part.text})
        elif isinstance(part, ReasoningPart):
            if ModelAbility.REASONING in abilities:
                content.append({"type": "reasoning", "text": part.text})
        elif isinstance(part, FilePart):
            if _is_remote(part.url):
                content.append(
                    {
                        "type": "file",
                        "mime_type": part.mime_type or "application/octet-stream",
                        "filename": part.filename or "",
                        "data": part.url,
                    }
                )
        elif isinstance(part, ToolInvocationPart):
            invocation = part.tool_invocation
            # Calls without a result would leave the provider with an unpaired call
            if invocation.state != "result":
                continue
            calls.append(
                {
                    "type": "tool-call",
                    "tool_call_id": invocation.tool_call_id,
                    "tool_name": invocation.tool_name,
                    "args": invocation.args,
                }
            )
            results.append(
                {
                    "type": "tool-result",
                    "tool_call_id": invocation.tool_call_id,
                    "tool_name": invocation.tool_name,
                    "result": invocation.result,
                }
            )
        elif isinstance(part, ErrorPart):
            continue

    return content, calls, results


async def build_provider_messages(
    messages: list[Message],
    abilities: set[ModelAbility] | list[ModelAbility],
    fetch_text: TextFetcher | None = None,
) -> list[ProviderMessage]:
    """Build the provider message list for oldest-first `messages`.

    Consecutive user messages are merged. An assistant message is merged into
    the previous assistant message unless it carries tool invocations, in
    which case its tool calls and results go out as their own messages ahead
    of its content.
    """
    abilities = set(abilities)
    fetch_text = fetch_text or fetch_text_file
    mapped: list[ProviderMessage] = []

    for message in messages:
        if message.is_deleted:
            continue

        if message.role == "user":
            content = await _map_user_message(message, abilities, fetch_text)
            if not content:
                logger.debug(f"Skipping message with no content: {message.id}")
                continue
            last = mapped[-1] if mapped else None
            if last is not None and last.role == "user":
                last.content.extend(content)
            else:
                mapped.append(ProviderMessage(role="user", content=content, message_id=message.id))

        elif message.role == "assistant":
            content, calls, results = _map_assistant_message(message, abilities)
            last = mapped[-1] if mapped else None

            if not calls:
                if not content:
                    continue
                if last is not None and last.role == "assistant":
                    last.content.extend(content)
                else:
                    mapped.append(
                        ProviderMessage(role="assistant", content=content, message_id=message.id)
                    )
                continue

            mapped.append(
                ProviderMessage(
                    role="assistant", content=calls, message_id=f"{message.id}-tool-call"
                )
            )
            mapped.append(
                ProviderMessage(role="tool", content=results, message_id=f"{message.id}-tool-result")
            )
            if content:
                mapped.append(
                    ProviderMessage(role="assistant", content=content, message_id=message.id)
                )

    return mapped
