"""
Notification channels and the dispatcher that isolates them.

Each channel renders and sends its own payload.  The dispatcher tries
every channel independently: a failing email never prevents the Slack or
Teams attempt, and no channel failure reaches the caller.  Channels with
nothing configured are simply not constructed; ``LogChannel`` is always
present so a bulk summary is never lost entirely.
"""

from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Protocol

import requests

from itad_kernel.exceptions import NotificationDeliveryError
from itad_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


@dataclass(frozen=True)
class BulkNotification:
    """Aggregate outcome of one bulk run."""

    operation_kind: str
    total: int
    successful: int
    failed: int
    duration_ms: int

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return round(self.successful / self.total * 100, 1)

    def as_dict(self) -> dict[str, Any]:
        return {
            "operation_kind": self.operation_kind,
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
        }


class NotificationChannel(Protocol):
    name: str

    def render_bulk_summary(self, notification: BulkNotification) -> dict[str, Any]: ...

    def send(self, payload: dict[str, Any]) -> None: ...


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


class EmailChannel:
    """SMTP delivery.  ``payload`` carries ``subject`` and ``text``."""

    name = "email"

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        sender: str,
        recipients: tuple[str, ...],
        *,
        use_tls: bool = True,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 10.0,
        smtp_factory: Any = smtplib.SMTP,
    ):
        self._host = smtp_host
        self._port = smtp_port
        self._sender = sender
        self._recipients = tuple(recipients)
        self._use_tls = use_tls
        self._username = username
        self._password = password
        self._timeout = timeout
        self._smtp_factory = smtp_factory

    def render_bulk_summary(self, notification: BulkNotification) -> dict[str, Any]:
        op = notification.operation_kind
        lines = [
            f"The bulk {op} operation has been completed:",
            "",
            f"Operation: {op}",
            f"Total Items: {notification.total}",
            f"Successful: {notification.successful}",
            f"Failed: {notification.failed}",
            f"Success Rate: {notification.success_rate:.1f}%",
            f"Duration: {notification.duration_ms} ms",
            "",
        ]
        if notification.failed:
            lines.append("Please review failed items and retry if necessary.")
        else:
            lines.append("All items processed successfully!")
        return {"subject": f"Bulk {op} Completed", "text": "\n".join(lines)}

    def send(self, payload: dict[str, Any]) -> None:
        if not self._recipients:
            raise NotificationDeliveryError(self.name, "no recipients configured")

        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = ", ".join(self._recipients)
        message["Subject"] = payload["subject"]
        message.set_content(payload["text"])

        try:
            with self._smtp_factory(self._host, self._port, timeout=self._timeout) as smtp:
                if self._use_tls:
                    smtp.starttls()
                if self._username:
                    smtp.login(self._username, self._password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationDeliveryError(self.name, str(exc)) from exc


class _WebhookChannel:
    name = "webhook"

    def __init__(self, webhook_url: str, *, timeout: float = 10.0, http: Any = None):
        self._webhook_url = webhook_url
        self._timeout = timeout
        self._http = http or requests.Session()

    def send(self, payload: dict[str, Any]) -> None:
        try:
            resp = self._http.post(self._webhook_url, json=payload, timeout=self._timeout)
        except requests.exceptions.RequestException as exc:
            raise NotificationDeliveryError(self.name, str(exc)) from exc
        if resp.status_code >= 400:
            raise NotificationDeliveryError(self.name, f"HTTP {resp.status_code}")


class SlackChannel(_WebhookChannel):
    name = "slack"

    def __init__(self, webhook_url: str, channel: str = "#bulk-operations", **kwargs: Any):
        super().__init__(webhook_url, **kwargs)
        self._channel = channel

    def render_bulk_summary(self, notification: BulkNotification) -> dict[str, Any]:
        return {
            "channel": self._channel,
            "text": (
                f"📊 Bulk {notification.operation_kind} completed: "
                f"{notification.successful}/{notification.total} successful, "
                f"{notification.failed} failed"
            ),
        }


class TeamsChannel(_WebhookChannel):
    name = "teams"

    def render_bulk_summary(self, notification: BulkNotification) -> dict[str, Any]:
        return {
            "title": f"Bulk {notification.operation_kind} Completed",
            "text": (
                f"Successfully processed {notification.successful} out of "
                f"{notification.total} items. {notification.failed} failed."
            ),
            "themeColor": "FFA500" if notification.failed > 0 else "00AA00",
        }


class LogChannel:
    """Writes the notification to the structured log."""

    name = "log"

    def render_bulk_summary(self, notification: BulkNotification) -> dict[str, Any]:
        return notification.as_dict()

    def send(self, payload: dict[str, Any]) -> None:
        logger.info("notification_logged", extra={"payload": payload})


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class NotificationDispatcher:
    """Fans a notification out to every channel, each in isolation."""

    def __init__(self, channels: list[NotificationChannel] | None = None):
        self._channels: dict[str, NotificationChannel] = {}
        for channel in channels if channels is not None else [LogChannel()]:
            self._channels[channel.name] = channel

    @classmethod
    def from_settings(cls, settings: Any, *, http: Any = None) -> NotificationDispatcher:
        """Build from an ``itad_config.schema.NotificationSettings``-shaped object."""
        channels: list[NotificationChannel] = [LogChannel()]
        email = settings.email
        if email.enabled:
            channels.append(
                EmailChannel(
                    email.smtp_host,
                    email.smtp_port,
                    email.sender,
                    email.recipients,
                    use_tls=email.use_tls,
                    username=email.username,
                    password=email.password,
                    timeout=settings.timeout_seconds,
                )
            )
        if settings.slack.webhook_url:
            channels.append(
                SlackChannel(
                    settings.slack.webhook_url,
                    settings.slack.channel,
                    timeout=settings.timeout_seconds,
                    http=http,
                )
            )
        if settings.teams.webhook_url:
            channels.append(
                TeamsChannel(
                    settings.teams.webhook_url,
                    timeout=settings.timeout_seconds,
                    http=http,
                )
            )
        return cls(channels)

    @property
    def channel_names(self) -> tuple[str, ...]:
        return tuple(self._channels)

    def emit(self, channel: str, payload: dict[str, Any]) -> bool:
        """Send ``payload`` on one channel.  Returns False on failure."""
        target = self._channels.get(channel)
        if target is None:
            logger.warning("notification_channel_unknown", extra={"channel": channel})
            return False
        return self._deliver(target, payload)

    def emit_bulk_summary(self, notification: BulkNotification) -> dict[str, bool]:
        """Render and send on every channel.  Returns per-channel success."""
        outcome: dict[str, bool] = {}
        for name, channel in self._channels.items():
            try:
                payload = channel.render_bulk_summary(notification)
            except Exception:
                logger.warning(
                    "notification_render_failed", extra={"channel": name}, exc_info=True,
                )
                outcome[name] = False
                continue
            outcome[name] = self._deliver(channel, payload)
        return outcome

    def _deliver(self, channel: NotificationChannel, payload: dict[str, Any]) -> bool:
        try:
            channel.send(payload)
        except Exception:
            # Channel failures are isolated from each other and from the run
            logger.warning(
                "notification_delivery_failed",
                extra={"channel": channel.name},
                exc_info=True,
            )
            return False
        logger.debug("notification_delivered", extra={"channel": channel.name})
        return True
