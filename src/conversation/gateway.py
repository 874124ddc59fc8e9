"""Contract expected from the chat layer, plus the user-facing texts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from src.models import DispatchFailure, FailureKind

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000

THINKING_MESSAGE = "⏳ **Bob is thinking...**"
BUSY_MESSAGE = (
    "❌ **Bob is currently busy or having trouble thinking. Please try again in a bit.**"
)
OFFLINE_MESSAGE = (
    "⚠️ **Bob's brain link is offline.** The n8n workflow isn't active yet. "
    "Please try again shortly."
)
UNAUTHORIZED_MESSAGE = (
    "⚠️ **Bob's brain link is unauthorized.** The n8n API key may be invalid."
)
BLANK_MESSAGE = "⚠️ **Bob had a blank thought. Please try again.**"


def ai_error_message(error: str) -> str:
    return truncate(f"❌ **Error from AI:** {error}")


def truncate(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def failure_message(failure: DispatchFailure) -> str:
    """Chat text for a failed dispatch: busy, offline or unauthorized."""
    if failure.kind is FailureKind.NOT_FOUND or failure.status == 404:
        return OFFLINE_MESSAGE
    if failure.kind is FailureKind.UNAUTHORIZED or failure.status in (401, 403):
        return UNAUTHORIZED_MESSAGE
    return BUSY_MESSAGE


@dataclass(frozen=True)
class InboundMessage:
    """A chat message that should be relayed to the workflow."""

    message_id: str
    channel_id: str
    user_id: str
    username: str
    user_tag: str
    content: str
    created_at: str | None = None


class ConversationGateway(Protocol):
    """Operations the relay needs from the chat connection."""

    async def send_typing(self, channel_id: str) -> None: ...

    async def reply_placeholder(
        self, channel_id: str, message_id: str, text: str,
    ) -> str | None:
        """Reply to ``message_id`` and return the new message id."""
        ...

    async def edit_message(self, channel_id: str, message_id: str, text: str) -> bool:
        """Edit a message; False when it no longer exists."""
        ...

    async def send_message(self, channel_id: str, text: str) -> None: ...


class LoggingGateway:
    """Headless gateway that logs conversation updates instead of posting them.

    Used by the CLI when no chat connection is attached.
    """

    def __init__(self) -> None:
        self._next_id = 0
        self.messages: dict[str, str] = {}

    async def send_typing(self, channel_id: str) -> None:
        logger.debug("[%s] typing...", channel_id)

    async def reply_placeholder(
        self, channel_id: str, message_id: str, text: str,
    ) -> str | None:
        self._next_id += 1
        placeholder_id = f"local-{self._next_id}"
        self.messages[placeholder_id] = text
        logger.info("[%s] reply to %s: %s", channel_id, message_id, text)
        return placeholder_id

    async def edit_message(self, channel_id: str, message_id: str, text: str) -> bool:
        if message_id not in self.messages:
            return False
        self.messages[message_id] = text
        logger.info("[%s] edit %s: %s", channel_id, message_id, text)
        return True

    async def send_message(self, channel_id: str, text: str) -> None:
        logger.info("[%s] %s", channel_id, text)


async def edit_or_send(
    gateway: ConversationGateway,
    channel_id: str,
    status_message_id: str | None,
    text: str,
) -> None:
    """Edit the placeholder when there is one, otherwise post a new message."""
    if status_message_id and await gateway.edit_message(channel_id, status_message_id, text):
        return
    await gateway.send_message(channel_id, text)
