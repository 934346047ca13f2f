"""Keyword Notifier - watches chat messages for keywords and sends throttled alerts."""

__version__ = "0.1.0"
