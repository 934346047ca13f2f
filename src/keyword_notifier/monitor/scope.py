"""Scope filtering: decides whether a message is watched at all."""

from __future__ import annotations

import logging

from keyword_notifier.config import WatchConfig
from keyword_notifier.monitor.models import InboundMessage

logger = logging.getLogger(__name__)


def is_eligible(config: WatchConfig, message: InboundMessage) -> bool:
    """Return True if the message passes every scope rule.

    Checks run in a fixed order and stop at the first failure:

    1. monitoring is globally enabled
    2. the message was posted in a server
    3. the server is allowed (empty allow-list = all servers)
    4. the channel is allowed (empty allow-list = all channels)
    5. the author is not a bot, when bots are ignored
    6. the author is whitelisted (empty whitelist = all users)
    """
    if not config.global_enabled:
        return _reject("monitoring disabled", message)
    if not message.server_id:
        return _reject("no server", message)
    if config.allowed_servers and message.server_id not in config.allowed_servers:
        return _reject("server not allowed", message)
    if config.allowed_channels and message.channel_id not in config.allowed_channels:
        return _reject("channel not allowed", message)
    if config.ignore_bots and message.author_is_bot:
        return _reject("bot author", message)
    if config.user_whitelist and message.author_id not in config.user_whitelist:
        return _reject("user not whitelisted", message)
    return True


def _reject(reason: str, message: InboundMessage) -> bool:
    logger.debug("Ignoring message %s: %s", message.message_id, reason)
    return False
