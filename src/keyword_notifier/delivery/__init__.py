"""Delivery module - payloads, dispatch, and notification transports."""

from keyword_notifier.delivery.dispatcher import DispatchOutcome, NotificationDispatcher
from keyword_notifier.delivery.email import SendGridDelivery
from keyword_notifier.delivery.payload import NotificationPayload, build_payload
from keyword_notifier.delivery.slack import SlackDelivery, SlackDisplayResolver

__all__ = [
    "DispatchOutcome",
    "NotificationDispatcher",
    "NotificationPayload",
    "build_payload",
    "SendGridDelivery",
    "SlackDelivery",
    "SlackDisplayResolver",
]
