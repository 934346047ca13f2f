"""Keyword matching against message text."""

from __future__ import annotations

from typing import Sequence

from keyword_notifier.config import WatchConfig


def resolve_keywords(config: WatchConfig, server_id: str) -> Sequence[str]:
    """Return the server's own keyword list, falling back to the defaults."""
    server_keywords = config.per_server_keywords.get(server_id)
    if server_keywords:
        return server_keywords
    return config.default_keywords


def find_match(config: WatchConfig, server_id: str, content: str | None) -> str | None:
    """Return the first keyword contained in ``content``, or ``None``.

    Matching is plain case-insensitive substring containment in keyword
    list order, so "ale" matches "SCALE". The keyword is returned with its
    configured spelling.
    """
    if not content:
        return None

    haystack = content.casefold()
    for keyword in resolve_keywords(config, server_id):
        if not keyword or not keyword.strip():
            continue
        if keyword.casefold() in haystack:
            return keyword
    return None
