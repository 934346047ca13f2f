"""Tests for the delivery subsystem: payloads, Slack and SendGrid transports."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from keyword_notifier.config import EmailConfig
from keyword_notifier.delivery.email import SENDGRID_API_URL, SendGridDelivery
from keyword_notifier.delivery.payload import (
    UNKNOWN_CHANNEL,
    UNKNOWN_SERVER,
    UNKNOWN_USER,
    build_link,
    build_payload,
    clip_excerpt,
)
from keyword_notifier.delivery.slack import SlackDelivery, SlackDisplayResolver
from keyword_notifier.monitor.models import InboundMessage

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

LINK = "https://slack.com/archives/{channel_id}/p{message_key}"


def _msg(**overrides) -> InboundMessage:
    defaults = dict(
        server_id="T_MAIN",
        channel_id="C_GENERAL",
        author_id="U_ALICE",
        content="We have an alert on the payments service",
        timestamp=datetime(2026, 2, 12, 10, 0, 0, tzinfo=timezone.utc),
        author_name="alice",
        message_id="1770335814.365139",
    )
    defaults.update(overrides)
    return InboundMessage(**defaults)


class _StaticResolver:
    def server_name(self, server_id):
        return {"T_MAIN": "Acme"}.get(server_id)

    def channel_name(self, channel_id):
        return {"C_GENERAL": "#general"}.get(channel_id)

    def user_name(self, user_id):
        return {"U_ALICE": "Alice"}.get(user_id)


# ===================================================================
# Payload building
# ===================================================================


class TestBuildPayload:
    def test_payload_fields(self):
        payload = build_payload("alert", _msg(), _StaticResolver(), LINK, 500)
        assert payload.keyword == "alert"
        assert payload.server_name == "Acme"
        assert payload.channel_name == "#general"
        assert payload.author_name == "alice"
        assert payload.excerpt == "We have an alert on the payments service"
        assert payload.link == "https://slack.com/archives/C_GENERAL/p1770335814365139"
        assert payload.timestamp == datetime(2026, 2, 12, 10, 0, 0, tzinfo=timezone.utc)

    def test_unknown_ids_fall_back_to_placeholders(self):
        msg = _msg(server_id="T_X", channel_id="C_X", author_id="U_X", author_name=None)
        payload = build_payload("alert", msg, _StaticResolver(), LINK, 500)
        assert payload.server_name == UNKNOWN_SERVER
        assert payload.channel_name == UNKNOWN_CHANNEL
        assert payload.author_name == UNKNOWN_USER

    def test_resolver_errors_do_not_abort(self):
        resolver = MagicMock()
        resolver.server_name.side_effect = RuntimeError("api down")
        resolver.channel_name.side_effect = RuntimeError("api down")
        payload = build_payload("alert", _msg(), resolver, LINK, 500)
        assert payload.server_name == UNKNOWN_SERVER
        assert payload.channel_name == UNKNOWN_CHANNEL

    def test_author_name_resolved_from_id(self):
        payload = build_payload("alert", _msg(author_name=None), _StaticResolver(), LINK, 500)
        assert payload.author_name == "Alice"

    def test_no_resolver(self):
        payload = build_payload("alert", _msg(), None, LINK, 500)
        assert payload.server_name == UNKNOWN_SERVER
        assert payload.author_name == "alice"

    def test_excerpt_is_clipped(self):
        assert clip_excerpt("x" * 20, 10) == "x" * 10 + "..."
        assert clip_excerpt("  short  ", 10) == "short"
        assert clip_excerpt("anything", 0) == "anything"

    def test_link_template_placeholders(self):
        link = build_link(
            "https://example.com/{server_id}/{channel_id}/{message_id}",
            "T1", "C1", "123.456",
        )
        assert link == "https://example.com/T1/C1/123.456"

    def test_invalid_link_template_returned_unchanged(self):
        assert build_link("https://x/{nope}", "T1", "C1", "1") == "https://x/{nope}"

    def test_text_rendering(self, sample_payload):
        text = sample_payload.to_text()
        assert "Keyword: alert" in text
        assert "Server: Acme" in text
        assert "Channel: #general" in text
        assert "User: alice" in text
        assert "Link to message: https://slack.com/archives/" in text
        assert sample_payload.subject == 'Keyword Detected: "alert" in Acme'


# ===================================================================
# Slack
# ===================================================================


class TestSlackDelivery:
    def test_sends_dm_to_owner(self, sample_config, mock_slack_client, sample_payload):
        delivery = SlackDelivery(sample_config, slack_client=mock_slack_client)
        assert delivery.is_configured() is True
        assert delivery.deliver(sample_payload) is None
        mock_slack_client.chat_postMessage.assert_called_once()
        call_kwargs = mock_slack_client.chat_postMessage.call_args[1]
        assert call_kwargs["channel"] == "U_TEST_OWNER"
        assert call_kwargs["text"] == sample_payload.subject
        assert call_kwargs["blocks"][0]["type"] == "header"

    def test_not_configured_without_client(self, sample_config):
        assert SlackDelivery(sample_config, slack_client=None).is_configured() is False

    def test_api_errors_propagate(self, sample_config, mock_slack_client, sample_payload):
        mock_slack_client.chat_postMessage.side_effect = RuntimeError("channel_not_found")
        delivery = SlackDelivery(sample_config, slack_client=mock_slack_client)
        with pytest.raises(RuntimeError):
            delivery.deliver(sample_payload)


class TestSlackDisplayResolver:
    def test_lookups(self, mock_slack_client):
        resolver = SlackDisplayResolver(mock_slack_client)
        assert resolver.server_name("T_MAIN") == "Acme"
        assert resolver.channel_name("C_GENERAL") == "#general"
        assert resolver.user_name("U_ALICE") == "Alice"

    def test_results_are_cached(self, mock_slack_client):
        resolver = SlackDisplayResolver(mock_slack_client)
        resolver.server_name("T_MAIN")
        resolver.server_name("T_MAIN")
        mock_slack_client.team_info.assert_called_once_with(team="T_MAIN")

    def test_failures_return_none(self, mock_slack_client):
        mock_slack_client.conversations_info.side_effect = RuntimeError("not_in_channel")
        resolver = SlackDisplayResolver(mock_slack_client)
        assert resolver.channel_name("C_SECRET") is None

    def test_failures_are_cached(self, mock_slack_client):
        mock_slack_client.conversations_info.side_effect = RuntimeError("not_in_channel")
        resolver = SlackDisplayResolver(mock_slack_client)
        assert resolver.channel_name("C_SECRET") is None
        assert resolver.channel_name("C_SECRET") is None
        mock_slack_client.conversations_info.assert_called_once_with(channel="C_SECRET")

    def test_no_client(self):
        assert SlackDisplayResolver(None).server_name("T_MAIN") is None


# ===================================================================
# SendGrid
# ===================================================================


class TestSendGridDelivery:
    def test_is_configured(self):
        assert SendGridDelivery(EmailConfig(sendgrid_api_key="SG.x")).is_configured() is True
        assert SendGridDelivery(EmailConfig()).is_configured() is False
        assert SendGridDelivery(
            EmailConfig(sendgrid_api_key="SG.x", sender_address="")
        ).is_configured() is False

    def test_body_lists_all_recipients(self, sample_payload):
        config = EmailConfig(
            sendgrid_api_key="SG.x",
            sender_address="alerts@example.com",
            recipients=["a@example.com", "b@example.com"],
        )
        body = SendGridDelivery(config).build_body(sample_payload)
        assert body["personalizations"] == [
            {"to": [{"email": "a@example.com"}, {"email": "b@example.com"}]},
        ]
        assert body["from"] == {"email": "alerts@example.com"}
        assert body["subject"] == sample_payload.subject
        assert body["content"][0]["type"] == "text/plain"
        assert "Keyword: alert" in body["content"][0]["value"]

    def test_sender_receives_mail_without_recipients(self, sample_payload):
        config = EmailConfig(sendgrid_api_key="SG.x", sender_address="me@example.com")
        body = SendGridDelivery(config).build_body(sample_payload)
        assert body["personalizations"][0]["to"] == [{"email": "me@example.com"}]

    @patch("keyword_notifier.delivery.email.httpx.post")
    def test_deliver_posts_with_bearer_token(self, mock_post, sample_payload):
        mock_post.return_value = MagicMock(status_code=202, text="")
        SendGridDelivery(EmailConfig(sendgrid_api_key="SG.secret")).deliver(sample_payload)
        mock_post.assert_called_once()
        args, kwargs = mock_post.call_args
        assert args[0] == SENDGRID_API_URL
        assert kwargs["headers"]["Authorization"] == "Bearer SG.secret"
        assert kwargs["json"]["subject"] == sample_payload.subject

    @patch("keyword_notifier.delivery.email.httpx.post")
    def test_deliver_raises_on_error_status(self, mock_post, sample_payload):
        mock_post.return_value = MagicMock(status_code=401, text="unauthorized")
        with pytest.raises(RuntimeError, match="401"):
            SendGridDelivery(EmailConfig(sendgrid_api_key="SG.bad")).deliver(sample_payload)
