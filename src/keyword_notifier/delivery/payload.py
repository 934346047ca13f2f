"""Notification payloads and the contracts of the collaborators that use them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Protocol

from keyword_notifier.monitor.models import InboundMessage

logger = logging.getLogger(__name__)

UNKNOWN_SERVER = "Unknown Server"
UNKNOWN_CHANNEL = "Unknown Channel"
UNKNOWN_USER = "Unknown User"


class DisplayResolver(Protocol):
    """Turns ids into human-readable names. May return ``None`` or raise."""

    def server_name(self, server_id: str) -> str | None: ...

    def channel_name(self, channel_id: str) -> str | None: ...

    def user_name(self, user_id: str) -> str | None: ...


class Delivery(Protocol):
    """Sends a notification. Raises on failure; callers decide what to do."""

    def is_configured(self) -> bool: ...

    def deliver(self, payload: NotificationPayload) -> None: ...


@dataclass(frozen=True)
class NotificationPayload:
    """Everything a transport needs to tell the user about one keyword hit."""

    keyword: str
    server_id: str
    channel_id: str
    server_name: str
    channel_name: str
    author_name: str
    excerpt: str
    link: str
    timestamp: datetime

    @property
    def subject(self) -> str:
        return f'Keyword Detected: "{self.keyword}" in {self.server_name}'

    @property
    def formatted_time(self) -> str:
        return self.timestamp.strftime("%Y-%m-%d %H:%M:%S %Z").strip()

    def to_text(self) -> str:
        """Render the plain-text notification body."""
        return (
            f"Keyword: {self.keyword}\n"
            f"Server: {self.server_name}\n"
            f"Channel: {self.channel_name}\n"
            f"User: {self.author_name}\n"
            f"Time: {self.formatted_time}\n"
            f"\n"
            f"Message:\n{self.excerpt}\n"
            f"\n"
            f"Link to message: {self.link}\n"
        )


def build_payload(
    keyword: str,
    message: InboundMessage,
    resolver: DisplayResolver | None,
    link_template: str,
    excerpt_chars: int,
) -> NotificationPayload:
    """Assemble the payload for an admitted match.

    Name lookups never abort the notification: unknown ids and resolver
    errors fall back to placeholder names.
    """
    server_id = message.server_id or ""
    channel_id = message.channel_id or ""
    message_id = message.message_id or ""

    author_name = message.author_name
    if not author_name and message.author_id:
        author_name = _resolve(resolver, "user_name", message.author_id, UNKNOWN_USER)

    return NotificationPayload(
        keyword=keyword,
        server_id=server_id,
        channel_id=channel_id,
        server_name=_resolve(resolver, "server_name", server_id, UNKNOWN_SERVER),
        channel_name=_resolve(resolver, "channel_name", channel_id, UNKNOWN_CHANNEL),
        author_name=author_name or UNKNOWN_USER,
        excerpt=clip_excerpt(message.content or "", excerpt_chars),
        link=build_link(link_template, server_id, channel_id, message_id),
        timestamp=message.timestamp or datetime.now(timezone.utc),
    )


def clip_excerpt(text: str, limit: int) -> str:
    text = text.strip()
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def build_link(template: str, server_id: str, channel_id: str, message_id: str) -> str:
    """Fill the link template; unknown placeholders leave the template as-is."""
    try:
        return template.format(
            server_id=server_id,
            channel_id=channel_id,
            message_id=message_id,
            message_key=message_id.replace(".", ""),
        )
    except (KeyError, IndexError, ValueError):
        logger.warning("Invalid link template %r", template)
        return template


def _resolve(
    resolver: DisplayResolver | None,
    method: str,
    target_id: str,
    fallback: str,
) -> str:
    if resolver is None or not target_id:
        return fallback
    lookup: Callable[[str], str | None] = getattr(resolver, method)
    try:
        name = lookup(target_id)
    except Exception:
        logger.warning("Display lookup %s(%s) failed", method, target_id, exc_info=True)
        return fallback
    return name or fallback
