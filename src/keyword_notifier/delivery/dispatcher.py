"""Notification dispatch - runs each message through filter, matcher and throttle.

Admitted matches are rendered into a payload and handed to the delivery
transport on a worker thread, so a slow transport never holds up the
message path.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from keyword_notifier.config import WatchConfig
from keyword_notifier.delivery.payload import (
    Delivery,
    DisplayResolver,
    build_payload,
)
from keyword_notifier.monitor.matcher import find_match, resolve_keywords
from keyword_notifier.monitor.models import InboundMessage, ThrottleKey
from keyword_notifier.monitor.scope import is_eligible
from keyword_notifier.monitor.throttle import ThrottleDecision, ThrottleGate

logger = logging.getLogger(__name__)

TEST_KEYWORD = "test-notification"


class DispatchOutcome(Enum):
    """What happened to one message."""

    INELIGIBLE = "ineligible"
    NO_MATCH = "no_match"
    NOT_CONFIGURED = "not_configured"
    SUPPRESSED = "suppressed"
    DISPATCHED = "dispatched"
    FAILED = "failed"


class NotificationDispatcher:
    """Orchestrates the per-message pipeline.

    Flow:
      1. ``is_eligible`` drops messages outside the watched scope.
      2. ``find_match`` picks the first keyword in the message.
      3. The transport must be configured, otherwise nothing is sent.
      4. ``ThrottleGate.admit`` applies the global and per-keyword limits.
      5. The payload is built and ``delivery.deliver`` runs on the executor.

    ``handle`` never raises. Delivery errors are logged on the worker and do
    not undo the throttle admission.
    """

    def __init__(
        self,
        delivery: Delivery,
        resolver: DisplayResolver | None = None,
        gate: ThrottleGate | None = None,
        link_template: str = "https://slack.com/archives/{channel_id}/p{message_key}",
        excerpt_chars: int = 500,
        max_workers: int = 2,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.delivery = delivery
        self.resolver = resolver
        self.gate = gate or (ThrottleGate(clock) if clock else ThrottleGate())
        self.link_template = link_template
        self.excerpt_chars = excerpt_chars
        self.stats: Counter[str] = Counter()
        self._stats_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="keyword-delivery",
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def handle(
        self,
        config: WatchConfig,
        message: InboundMessage,
        now: float | None = None,
    ) -> DispatchOutcome:
        """Evaluate one message and dispatch a notification if admitted.

        ``now`` is passed to the throttle gate; ``None`` uses the gate's clock.
        """
        try:
            outcome = self._evaluate(config, message, now)
        except Exception:
            logger.exception("Failed to handle message %s", message.message_id)
            outcome = DispatchOutcome.FAILED
        self._count(outcome.value)
        return outcome

    def send_test_notification(self, config: WatchConfig) -> DispatchOutcome:
        """Push one synthetic message through the full pipeline.

        The message is shaped to fit the configured scope where possible and
        carries the ``test-notification`` keyword, which is added to the
        target server's keyword list for this one evaluation.
        """
        message = build_test_message(config)
        server_id = message.server_id or ""
        keywords = (TEST_KEYWORD, *resolve_keywords(config, server_id))
        per_server = {**config.per_server_keywords, server_id: keywords}
        test_config = dataclasses.replace(config, per_server_keywords=per_server)

        outcome = self.handle(test_config, message)
        logger.info("Test notification outcome: %s", outcome.value)
        return outcome

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting deliveries; optionally wait for in-flight ones."""
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _evaluate(
        self,
        config: WatchConfig,
        message: InboundMessage,
        now: float | None,
    ) -> DispatchOutcome:
        if not is_eligible(config, message):
            return DispatchOutcome.INELIGIBLE

        server_id = message.server_id or ""
        keyword = find_match(config, server_id, message.content)
        if keyword is None:
            return DispatchOutcome.NO_MATCH

        if not self.delivery.is_configured():
            logger.debug("Delivery not configured; skipping match '%s'", keyword)
            return DispatchOutcome.NOT_CONFIGURED

        decision = self.gate.admit(
            ThrottleKey.build(server_id, keyword),
            now,
            config.rate_limit_per_minute,
            config.cooldown_seconds,
        )
        if decision is ThrottleDecision.SUPPRESS:
            return DispatchOutcome.SUPPRESSED

        try:
            self._executor.submit(self._deliver, keyword, message)
        except RuntimeError:
            # Executor already shut down; the admit stays recorded.
            logger.exception("Could not queue notification for '%s'", keyword)
            return DispatchOutcome.FAILED

        logger.info(
            "Keyword '%s' matched in %s/%s; notification queued",
            keyword, server_id, message.channel_id,
        )
        return DispatchOutcome.DISPATCHED

    def _deliver(self, keyword: str, message: InboundMessage) -> None:
        """Build the payload and send it. Runs on the executor."""
        try:
            payload = build_payload(
                keyword,
                message,
                self.resolver,
                self.link_template,
                self.excerpt_chars,
            )
            self.delivery.deliver(payload)
        except Exception:
            self._count("delivery_failed")
            logger.exception(
                "Notification delivery failed for '%s' in %s",
                keyword, message.server_id,
            )
            return
        self._count("delivered")
        logger.info("Delivered notification for '%s'", keyword)

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self.stats[name] += 1


def build_test_message(config: WatchConfig) -> InboundMessage:
    """Return a synthetic message that satisfies the scope rules when it can."""
    return InboundMessage(
        server_id=_first(config.allowed_servers, "test-server"),
        channel_id=_first(config.allowed_channels, "test-channel"),
        author_id=_first(config.user_whitelist, "test-user"),
        content=f"This is a {TEST_KEYWORD} from Keyword Notifier.",
        author_is_bot=False,
        timestamp=datetime.now(timezone.utc),
        author_name="NotifierTester",
        message_id="test-msg-id",
    )


def _first(ids: frozenset[str], default: str) -> str:
    return min(ids) if ids else default
