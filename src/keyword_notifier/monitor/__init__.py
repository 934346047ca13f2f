"""Monitor module - scope filtering, keyword matching, and throttling."""

from keyword_notifier.monitor.matcher import find_match, resolve_keywords
from keyword_notifier.monitor.models import InboundMessage, ThrottleKey, parse_slack_event
from keyword_notifier.monitor.scope import is_eligible
from keyword_notifier.monitor.throttle import ThrottleDecision, ThrottleGate

__all__ = [
    "InboundMessage",
    "ThrottleKey",
    "parse_slack_event",
    "is_eligible",
    "find_match",
    "resolve_keywords",
    "ThrottleDecision",
    "ThrottleGate",
]
