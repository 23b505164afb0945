"""Chat front-end contract and helpers shared by every front-end."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from agent_bridge.admission.allowlist import MessageOrigin

logger = logging.getLogger(__name__)

THREAD_NAME_MAX_CHARS = 80
DEFAULT_THREAD_NAME = "New conversation"
MESSAGE_MAX_CHARS = 2000
FAILURE_NOTICE = "Something went wrong and the request could not be completed. Try again?"


@dataclass(slots=True)
class InboundMessage:
    """One chat message as handed over by a front-end."""

    thread_id: str
    author_id: str
    content: str
    channel_id: str | None = None
    parent_channel_id: str | None = None
    role_ids: frozenset[str] = frozenset()
    is_direct: bool = False
    channel_context: str | None = None
    working_dir: str | None = None

    def origin(self) -> MessageOrigin:
        return MessageOrigin(
            author_id=self.author_id,
            channel_id=self.channel_id,
            parent_channel_id=self.parent_channel_id,
            role_ids=self.role_ids,
            is_direct=self.is_direct,
        )


class ChatFrontend(Protocol):
    """What the bridge needs from a chat platform.

    ``deliver_reply`` raises ``FrontendDeliveryError`` when the platform rejects the
    message; the worker retries the job in that case.
    """

    def send_typing(self, thread_id: str) -> None: ...

    def deliver_reply(self, thread_id: str, text: str) -> None: ...

    def notify_failure(self, thread_id: str, text: str) -> None: ...

    def rename_thread(self, thread_id: str, name: str) -> None: ...


def generate_thread_name(content: str) -> str:
    """Thread title from the first message: truncated to 80 chars, never empty."""

    text = content.strip()
    if not text:
        return DEFAULT_THREAD_NAME
    if len(text) > THREAD_NAME_MAX_CHARS:
        return text[: THREAD_NAME_MAX_CHARS - 3] + "..."
    return text


def split_message(text: str, *, limit: int = MESSAGE_MAX_CHARS) -> list[str]:
    """Split ``text`` into platform-sized chunks, preferring newline then space boundaries."""

    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= limit:
            chunks.append(remaining)
            break
        split_at = remaining.rfind("\n", 0, limit + 1)
        if split_at < limit // 2:
            split_at = remaining.rfind(" ", 0, limit + 1)
        if split_at < limit // 2:
            split_at = limit
        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:].strip()
    return chunks


class ConsoleFrontend:
    """Front-end that writes replies through a line emitter; used by the CLI worker."""

    def __init__(self, emit: Callable[[str], None] | None = None) -> None:
        self._emit = emit or (lambda line: logger.info("%s", line))

    def send_typing(self, thread_id: str) -> None:
        logger.debug("[%s] typing", thread_id)

    def deliver_reply(self, thread_id: str, text: str) -> None:
        for chunk in split_message(text):
            self._emit(f"[{thread_id}] {chunk}")

    def notify_failure(self, thread_id: str, text: str) -> None:
        self._emit(f"[{thread_id}] ! {text}")

    def rename_thread(self, thread_id: str, name: str) -> None:
        self._emit(f"[{thread_id}] thread named: {name}")
