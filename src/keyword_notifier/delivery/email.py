"""Email delivery through the SendGrid v3 mail API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from keyword_notifier.config import EmailConfig
    from keyword_notifier.delivery.payload import NotificationPayload

logger = logging.getLogger(__name__)

SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"


class SendGridDelivery:
    """Emails each notification to the configured recipients.

    With no recipients configured, the sender address receives the mail.
    """

    def __init__(self, config: EmailConfig, timeout: float = 10.0) -> None:
        self.config = config
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.config.sendgrid_api_key and self.config.sender_address)

    def recipients(self) -> list[str]:
        return list(self.config.recipients) or [self.config.sender_address]

    def build_body(self, payload: NotificationPayload) -> dict:
        return {
            "personalizations": [
                {"to": [{"email": address} for address in self.recipients()]},
            ],
            "from": {"email": self.config.sender_address},
            "subject": payload.subject,
            "content": [{"type": "text/plain", "value": payload.to_text()}],
        }

    def deliver(self, payload: NotificationPayload) -> None:
        """POST the mail; raises ``RuntimeError`` on a non-2xx response."""
        response = httpx.post(
            SENDGRID_API_URL,
            json=self.build_body(payload),
            headers={"Authorization": f"Bearer {self.config.sendgrid_api_key}"},
            timeout=self.timeout,
        )
        if not 200 <= response.status_code < 300:
            raise RuntimeError(
                f"SendGrid returned {response.status_code}: {response.text[:200]}"
            )
        logger.info(
            "Emailed notification for '%s' to %d recipient(s)",
            payload.keyword, len(self.recipients()),
        )
