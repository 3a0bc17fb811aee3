"""
Tests for itad_services.notifications -- channels and the dispatcher.

Channel failures must stay isolated: one broken channel never blocks the
others and never reaches the caller.
"""

import smtplib

import pytest
import requests

from itad_config.schema import EmailSettings, NotificationSettings, SlackSettings, TeamsSettings
from itad_kernel.exceptions import NotificationDeliveryError
from itad_services.notifications import (
    BulkNotification,
    EmailChannel,
    LogChannel,
    NotificationDispatcher,
    SlackChannel,
    TeamsChannel,
)

SUMMARY = BulkNotification(
    operation_kind="sanitize", total=4, successful=3, failed=1, duration_ms=1200,
)
CLEAN = BulkNotification(
    operation_kind="register", total=2, successful=2, failed=0, duration_ms=10,
)


class FakeResponse:

    def __init__(self, status_code=200):
        self.status_code = status_code


class FakeHttp:

    def __init__(self, status_code=200, error=None):
        self.status_code = status_code
        self.error = error
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        if self.error is not None:
            raise self.error
        return FakeResponse(self.status_code)


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def send_message(self, message):
        self.messages.append(message)


class BrokenSMTP(FakeSMTP):

    def send_message(self, message):
        raise smtplib.SMTPServerDisconnected("gone")


class ExplodingChannel:
    name = "exploding"

    def render_bulk_summary(self, notification):
        raise RuntimeError("template bug")

    def send(self, payload):
        raise AssertionError("never reached")


class CollectingChannel:

    def __init__(self, name, fail=False):
        self.name = name
        self.fail = fail
        self.sent = []

    def render_bulk_summary(self, notification):
        return notification.as_dict()

    def send(self, payload):
        if self.fail:
            raise NotificationDeliveryError(self.name, "down")
        self.sent.append(payload)


@pytest.fixture(autouse=True)
def _reset_smtp():
    FakeSMTP.instances.clear()
    yield
    FakeSMTP.instances.clear()


class TestBulkNotification:

    def test_success_rate(self):
        assert SUMMARY.success_rate == 75.0
        assert BulkNotification("register", 0, 0, 0, 0).success_rate == 0.0


class TestEmailChannel:

    def _channel(self, factory=FakeSMTP, recipients=("ops@example.com",)):
        return EmailChannel(
            "smtp.example.com", 587, "itad@example.com", recipients,
            username="itad", password="secret", smtp_factory=factory,
        )

    def test_render_mentions_failures(self):
        payload = self._channel().render_bulk_summary(SUMMARY)
        assert payload["subject"] == "Bulk sanitize Completed"
        assert "Success Rate: 75.0%" in payload["text"]
        assert "Please review failed items" in payload["text"]

    def test_render_all_good(self):
        payload = self._channel().render_bulk_summary(CLEAN)
        assert "All items processed successfully!" in payload["text"]

    def test_send(self):
        channel = self._channel()
        channel.send({"subject": "s", "text": "body"})

        smtp = FakeSMTP.instances[0]
        assert (smtp.host, smtp.port) == ("smtp.example.com", 587)
        assert smtp.started_tls
        assert smtp.logged_in == ("itad", "secret")
        assert smtp.messages[0]["To"] == "ops@example.com"
        assert smtp.messages[0]["Subject"] == "s"

    def test_smtp_error_becomes_delivery_error(self):
        with pytest.raises(NotificationDeliveryError) as exc_info:
            self._channel(factory=BrokenSMTP).send({"subject": "s", "text": "t"})
        assert exc_info.value.channel == "email"

    def test_no_recipients(self):
        with pytest.raises(NotificationDeliveryError, match="no recipients"):
            self._channel(recipients=()).send({"subject": "s", "text": "t"})


class TestWebhookChannels:

    def test_slack_payload(self):
        http = FakeHttp()
        channel = SlackChannel("https://hooks.slack.example/x", "#itad", http=http)

        payload = channel.render_bulk_summary(SUMMARY)
        channel.send(payload)

        assert payload["channel"] == "#itad"
        assert "3/4 successful, 1 failed" in payload["text"]
        assert http.posts == [("https://hooks.slack.example/x", payload)]

    def test_teams_theme_color(self):
        channel = TeamsChannel("https://teams.example/x", http=FakeHttp())
        assert channel.render_bulk_summary(SUMMARY)["themeColor"] == "FFA500"
        assert channel.render_bulk_summary(CLEAN)["themeColor"] == "00AA00"
        assert channel.render_bulk_summary(CLEAN)["title"] == "Bulk register Completed"

    def test_http_error_status(self):
        channel = SlackChannel("https://hooks.slack.example/x", http=FakeHttp(status_code=500))
        with pytest.raises(NotificationDeliveryError, match="HTTP 500"):
            channel.send({"text": "x"})

    def test_transport_error(self):
        http = FakeHttp(error=requests.exceptions.ConnectionError("refused"))
        channel = TeamsChannel("https://teams.example/x", http=http)
        with pytest.raises(NotificationDeliveryError) as exc_info:
            channel.send({"text": "x"})
        assert exc_info.value.channel == "teams"


class TestDispatcher:

    def test_default_is_log_channel(self):
        assert NotificationDispatcher().channel_names == ("log",)

    def test_one_failing_channel_does_not_block_others(self, captured_logs):
        broken = CollectingChannel("email", fail=True)
        slack = CollectingChannel("slack")
        teams = CollectingChannel("teams")
        dispatcher = NotificationDispatcher([broken, ExplodingChannel(), slack, teams])

        outcome = dispatcher.emit_bulk_summary(SUMMARY)

        assert outcome == {"email": False, "exploding": False, "slack": True, "teams": True}
        assert slack.sent == [SUMMARY.as_dict()]
        assert teams.sent == [SUMMARY.as_dict()]
        messages = [r["message"] for r in captured_logs()]
        assert "notification_delivery_failed" in messages
        assert "notification_render_failed" in messages

    def test_emit_single_channel(self):
        slack = CollectingChannel("slack")
        dispatcher = NotificationDispatcher([slack])
        assert dispatcher.emit("slack", {"text": "hi"}) is True
        assert dispatcher.emit("pager", {"text": "hi"}) is False
        assert slack.sent == [{"text": "hi"}]

    def test_log_channel(self, captured_logs):
        LogChannel().send({"total": 1})
        record = [r for r in captured_logs() if r["message"] == "notification_logged"][0]
        assert record["payload"] == {"total": 1}

    def test_from_settings_builds_configured_channels(self):
        settings = NotificationSettings(
            email=EmailSettings(enabled=True, recipients=("ops@example.com",)),
            slack=SlackSettings(webhook_url="https://hooks.slack.example/x"),
            teams=TeamsSettings(webhook_url=None),
        )
        dispatcher = NotificationDispatcher.from_settings(settings, http=FakeHttp())
        assert dispatcher.channel_names == ("log", "email", "slack")

    def test_from_default_settings(self):
        dispatcher = NotificationDispatcher.from_settings(NotificationSettings())
        assert dispatcher.channel_names == ("log",)
