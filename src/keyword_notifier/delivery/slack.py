"""Slack-backed collaborators: display-name lookups and DM delivery.

Notifications are sent as a DM to the owner using Slack Block Kit, with the
keyword, where it was said, who said it, an excerpt and a link back.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from slack_sdk import WebClient

    from keyword_notifier.config import NotifierConfig
    from keyword_notifier.delivery.payload import NotificationPayload

logger = logging.getLogger(__name__)


class SlackDisplayResolver:
    """Resolves workspace, channel and user ids to names via the Web API.

    Lookups are cached for the process lifetime, failures included. A failed
    lookup returns ``None`` so the payload builder can substitute a
    placeholder.
    """

    def __init__(self, slack_client: WebClient | None = None) -> None:
        self._client = slack_client
        self._cache: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def server_name(self, server_id: str) -> str | None:
        return self._lookup("team", server_id)

    def channel_name(self, channel_id: str) -> str | None:
        name = self._lookup("channel", channel_id)
        return f"#{name}" if name else None

    def user_name(self, user_id: str) -> str | None:
        return self._lookup("user", user_id)

    def _lookup(self, kind: str, target_id: str) -> str | None:
        if not self._client or not target_id:
            return None

        cache_key = (kind, target_id)
        with self._lock:
            if cache_key in self._cache:
                return self._cache[cache_key] or None

        try:
            name = self._fetch(kind, target_id)
        except Exception:
            logger.warning("Slack lookup failed for %s %s", kind, target_id, exc_info=True)
            name = None

        # Misses are cached as "" so a failing id is only asked for once
        with self._lock:
            self._cache[cache_key] = name or ""
        return name or None

    def _fetch(self, kind: str, target_id: str) -> str | None:
        if kind == "team":
            response = self._client.team_info(team=target_id)
            return response.get("team", {}).get("name")
        if kind == "channel":
            response = self._client.conversations_info(channel=target_id)
            return response.get("channel", {}).get("name")
        response = self._client.users_info(user=target_id)
        user = response.get("user", {})
        profile = user.get("profile", {})
        return profile.get("display_name") or user.get("real_name") or user.get("name")


class SlackDelivery:
    """Sends keyword notifications as a DM to the configured owner."""

    def __init__(self, config: NotifierConfig, slack_client: WebClient | None = None) -> None:
        self.owner_user_id: str = config.slack.owner_user_id
        self._client = slack_client

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_configured(self) -> bool:
        return self._client is not None and bool(self.owner_user_id)

    def deliver(self, payload: NotificationPayload) -> None:
        """Post the notification DM. Slack API errors propagate to the caller."""
        self._client.chat_postMessage(
            channel=self.owner_user_id,
            text=payload.subject,
            blocks=self._format_blocks(payload),
        )
        logger.info("Sent Slack notification for keyword '%s'", payload.keyword)

    # ------------------------------------------------------------------
    # Block Kit builders
    # ------------------------------------------------------------------

    def _format_blocks(self, payload: NotificationPayload) -> list[dict]:
        link_text = f"<{payload.link}|View message>" if payload.link else ""
        return [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"Keyword detected: {payload.keyword}"[:150],
                    "emoji": True,
                },
            },
            {"type": "divider"},
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        f"*Server:* {payload.server_name}\n"
                        f"*Channel:* {payload.channel_name}\n"
                        f"*From:* {payload.author_name}\n"
                        f"*Time:* {payload.formatted_time}\n"
                        f"{link_text}"
                    ),
                },
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"> {payload.excerpt[:2900]}",
                },
            },
        ]
