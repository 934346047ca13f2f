"""Keyword Notifier - main application.

Listens to Slack messages over Socket Mode and runs each one through the
keyword pipeline. Runs as a long-lived process until interrupted.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import Any

from keyword_notifier.config import NotifierConfig, WatchConfig, load_config
from keyword_notifier.delivery.dispatcher import DispatchOutcome, NotificationDispatcher
from keyword_notifier.delivery.email import SendGridDelivery
from keyword_notifier.delivery.slack import SlackDelivery, SlackDisplayResolver
from keyword_notifier.monitor.models import parse_slack_event
from keyword_notifier.monitor.throttle import ThrottleGate

logger = logging.getLogger(__name__)


class KeywordNotifierBot:
    """Main orchestrator.

    Owns the pieces with a process lifetime:
      1. Slack client, used for name lookups and Slack delivery.
      2. Throttle gate, reset whenever the configuration changes.
      3. Dispatcher, which evaluates messages and queues deliveries.
      4. Slack Bolt app, the source of inbound messages.
    """

    def __init__(self, config: NotifierConfig) -> None:
        self.config = config
        self._bolt_app: Any = None
        self._socket_handler: Any = None
        self._config_lock = threading.Lock()

        self._slack_client = self._create_slack_client()

        self.gate = ThrottleGate()
        self.resolver = SlackDisplayResolver(self._slack_client)
        self.delivery = self._create_delivery()
        self.dispatcher = NotificationDispatcher(
            self.delivery,
            resolver=self.resolver,
            gate=self.gate,
            link_template=config.delivery.link_template,
            excerpt_chars=config.delivery.excerpt_chars,
            max_workers=config.delivery.max_workers,
        )

        self._setup_bolt_app()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Start the Socket Mode listener (blocks until stopped).

        Returns False when the listener could not run at all.
        """
        logger.info("Starting Keyword Notifier")

        if self._bolt_app is None or not self.config.slack.app_token:
            logger.error("Slack bot_token, signing_secret and app_token are required to listen")
            return False

        from slack_bolt.adapter.socket_mode import SocketModeHandler

        self._socket_handler = SocketModeHandler(self._bolt_app, self.config.slack.app_token)
        logger.info("Starting Slack Bolt socket-mode listener")
        try:
            self._socket_handler.start()
        except Exception:
            logger.exception("Bolt socket-mode listener failed")
            return False
        return True

    def stop(self) -> None:
        """Stop listening and let queued deliveries finish."""
        logger.info("Stopping Keyword Notifier")

        if self._socket_handler is not None:
            try:
                self._socket_handler.close()
            except Exception:
                logger.debug("Socket-mode handler already closed")

        self.dispatcher.shutdown(wait=True)
        logger.info("Keyword Notifier stopped (%s)", dict(self.dispatcher.stats))

    # ------------------------------------------------------------------
    # Configuration provider
    # ------------------------------------------------------------------

    def watch_config(self) -> WatchConfig:
        """Return the current configuration snapshot."""
        with self._config_lock:
            return self.config.watch

    def reconfigure(self, watch: WatchConfig) -> None:
        """Swap in new watch rules and forget throttle history."""
        with self._config_lock:
            self.config.watch = watch
        self.gate.reset()
        logger.info("Watch configuration updated")

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    def handle_event(self, event: dict) -> DispatchOutcome | None:
        """Process one Slack ``message`` event. Never raises."""
        try:
            message = parse_slack_event(event)
        except Exception:
            logger.exception("Could not parse Slack event")
            return None
        if message is None:
            return None
        return self.dispatcher.handle(self.watch_config(), message)

    def send_test_notification(self) -> DispatchOutcome:
        """Force one synthetic message through the pipeline."""
        return self.dispatcher.send_test_notification(self.watch_config())

    def _on_message(self, event: dict) -> None:
        self.handle_event(event)

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def _create_slack_client(self) -> Any:
        """Create a Slack WebClient if a bot token is configured."""
        if not self.config.slack.bot_token:
            return None
        from slack_sdk import WebClient
        return WebClient(token=self.config.slack.bot_token)

    def _create_delivery(self) -> SlackDelivery | SendGridDelivery:
        if self.config.delivery.mode == "email":
            return SendGridDelivery(self.config.email)
        return SlackDelivery(self.config, slack_client=self._slack_client)

    def _setup_bolt_app(self) -> None:
        """Configure the Slack Bolt app that feeds messages to the pipeline."""
        if not self.config.slack.bot_token or not self.config.slack.signing_secret:
            return

        from slack_bolt import App

        self._bolt_app = App(
            token=self.config.slack.bot_token,
            signing_secret=self.config.slack.signing_secret,
        )
        self._bolt_app.event("message")(self._on_message)
        logger.info("Slack Bolt app initialized with message listener")


# ======================================================================
# CLI entry point
# ======================================================================


def main() -> None:
    """Command-line entry point for Keyword Notifier."""
    parser = argparse.ArgumentParser(
        description="Keyword Notifier - get notified when watched keywords are posted",
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to config YAML file",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and exit",
    )
    parser.add_argument(
        "--test-notification",
        action="store_true",
        help="Send one synthetic notification through the full pipeline and exit",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(1)

    logger.info("Configuration loaded successfully")

    if args.dry_run:
        logger.info("Dry run complete - configuration is valid")
        sys.exit(0)

    bot = KeywordNotifierBot(config)

    if args.test_notification:
        outcome = bot.send_test_notification()
        bot.dispatcher.shutdown(wait=True)
        if outcome is not DispatchOutcome.DISPATCHED:
            logger.error("Test notification was not sent: %s", outcome.value)
            sys.exit(1)
        if bot.dispatcher.stats["delivery_failed"]:
            logger.error("Test notification delivery failed; see log above")
            sys.exit(1)
        logger.info("Test notification sent; check your inbox")
        sys.exit(0)

    def _shutdown(signum: int, _frame: Any) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, shutting down...", sig_name)
        bot.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    if not bot.start():
        bot.stop()
        sys.exit(1)


if __name__ == "__main__":
    main()
