"""Shared data types for the message pipeline.

InboundMessage is the core data type used across all modules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

# Slack subtypes that describe edits/deletes rather than a newly posted message
_IGNORED_SUBTYPES = frozenset({"message_changed", "message_deleted", "message_replied"})


@dataclass(frozen=True)
class InboundMessage:
    """A chat message as seen by the keyword pipeline.

    Every field may be missing on malformed input; the scope filter treats
    a missing required field as a failed check instead of raising.
    """
    server_id: str | None
    channel_id: str | None
    author_id: str | None
    content: str | None
    author_is_bot: bool = False
    timestamp: datetime | None = None
    author_name: str | None = None
    message_id: str | None = None


@dataclass(frozen=True)
class ThrottleKey:
    """Cooldown bucket: one per (server, keyword) pair."""
    server_id: str
    keyword: str

    @classmethod
    def build(cls, server_id: str, keyword: str) -> ThrottleKey:
        return cls(server_id=server_id, keyword=keyword.casefold())


def parse_slack_timestamp(ts_str: str | None) -> datetime | None:
    """Parse a Slack ``ts`` (epoch with microseconds) into a UTC datetime."""
    if not ts_str:
        return None
    try:
        return datetime.fromtimestamp(float(ts_str), tz=timezone.utc)
    except (ValueError, TypeError, OverflowError):
        logger.warning("Could not parse timestamp ts=%s", ts_str)
        return None


def parse_slack_event(event: dict[str, Any]) -> InboundMessage | None:
    """Convert a Slack ``message`` event into an InboundMessage.

    Slack workspaces play the role of servers. Bot detection mirrors Slack's
    own markers: a ``bot_id`` field or the ``bot_message`` subtype.

    Returns ``None`` for edit/delete notifications, which carry no new text.
    """
    subtype = event.get("subtype", "")
    if subtype in _IGNORED_SUBTYPES:
        return None

    ts = event.get("ts") or None
    return InboundMessage(
        server_id=event.get("team") or None,
        channel_id=event.get("channel") or None,
        author_id=event.get("user") or None,
        content=event.get("text"),
        author_is_bot=bool(event.get("bot_id")) or subtype == "bot_message",
        timestamp=parse_slack_timestamp(ts),
        author_name=event.get("username") or None,
        message_id=ts,
    )
