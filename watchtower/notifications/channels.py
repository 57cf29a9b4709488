"""
Channel Clients

One client per delivery channel. A client knows where a user's messages go
on its channel and how to deliver an already rendered payload.
"""

from __future__ import annotations

import asyncio
import smtplib
import time
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import BaseModel
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from watchtower.config import EngineSettings
from watchtower.monitoring.models import Channel
from watchtower.notifications.renderers import BRAND, EmailContent

if TYPE_CHECKING:
    from watchtower.monitoring.store import UserProfile

logger = structlog.get_logger(__name__)


class SendResult(BaseModel):
    """Outcome of one delivery attempt."""

    success: bool
    retryable: bool = False
    error: str | None = None
    message_id: str | None = None


class ChannelClient(ABC):
    """Delivers rendered payloads on one channel."""

    channel: Channel

    @abstractmethod
    def address_for(self, user: UserProfile) -> str | None:
        """The user's destination on this channel, or None if unconfigured."""

    @abstractmethod
    async def send(self, address: str, rendered: Any) -> SendResult:
        """Deliver a rendered payload."""


# =============================================================================
# Email
# =============================================================================


class EmailClient(ChannelClient):
    """Sends multipart email over SMTP."""

    channel = Channel.EMAIL

    def __init__(self, settings: EngineSettings) -> None:
        self._host = settings.smtp_host
        self._port = settings.smtp_port
        self._user = settings.smtp_user
        self._password = settings.smtp_password
        self._sender = settings.smtp_from or settings.smtp_user
        self._use_tls = settings.smtp_use_tls

    @property
    def configured(self) -> bool:
        return bool(self._host and self._sender)

    def address_for(self, user: UserProfile) -> str | None:
        return user.email

    async def send(self, address: str, rendered: EmailContent) -> SendResult:
        if not self.configured:
            return SendResult(success=False, error="Email service not configured")

        message = MIMEMultipart("alternative")
        message["From"] = self._sender
        message["To"] = address
        message["Subject"] = rendered.subject
        message["Message-ID"] = make_msgid(domain="watchtower")
        message.attach(MIMEText(rendered.text, "plain"))
        message.attach(MIMEText(rendered.html, "html"))

        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("SMTP delivery failed", recipient=address, error=str(e))
            return SendResult(success=False, retryable=True, error=str(e))

        return SendResult(success=True, message_id=message["Message-ID"])

    def _deliver(self, message: MIMEMultipart) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=30) as server:
            if self._use_tls:
                server.starttls()
            if self._user and self._password:
                server.login(self._user, self._password)
            server.send_message(message)


# =============================================================================
# HTTP webhooks
# =============================================================================


class HttpWebhookClient(ChannelClient):
    """Base for channels that POST JSON to a webhook URL."""

    message_id_header: str | None = None

    def __init__(
        self,
        default_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._default_url = default_url
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def send(self, address: str, rendered: dict[str, Any]) -> SendResult:
        client = await self._get_client()
        try:
            response = await client.post(address, json=rendered, headers=self.headers())
        except httpx.HTTPError as e:
            return SendResult(success=False, retryable=True, error=f"{self.channel.value} request failed: {e}")

        if response.is_success:
            message_id = response.headers.get(self.message_id_header) if self.message_id_header else None
            return SendResult(success=True, message_id=message_id)

        # Server errors and rate limits are transient; other client errors are not
        retryable = response.status_code >= 500 or response.status_code == 429
        return SendResult(
            success=False,
            retryable=retryable,
            error=f"{self.channel.value} API error: {response.status_code}",
        )


class DiscordClient(HttpWebhookClient):
    channel = Channel.DISCORD

    def address_for(self, user: UserProfile) -> str | None:
        discord = user.settings.get("discord") or {}
        return user.discord_webhook_url or discord.get("webhook_url") or self._default_url


class SlackClient(HttpWebhookClient):
    channel = Channel.SLACK

    def address_for(self, user: UserProfile) -> str | None:
        slack = user.settings.get("slack") or {}
        return user.slack_webhook_url or slack.get("webhook_url") or self._default_url


class WebhookClient(HttpWebhookClient):
    """Generic JSON webhook."""

    channel = Channel.WEBHOOK
    message_id_header = "x-request-id"

    def headers(self) -> dict[str, str]:
        return {**super().headers(), "User-Agent": f"{BRAND}/1.0"}

    def address_for(self, user: UserProfile) -> str | None:
        webhook = user.settings.get("webhook") or {}
        return user.webhook_url or webhook.get("url") or self._default_url


# =============================================================================
# Push
# =============================================================================


class ConsolePushClient(ChannelClient):
    """
    Push channel that renders notifications to the terminal.

    Stands in for an in-app push provider when running the engine from the CLI.
    """

    channel = Channel.PUSH

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(stderr=True)

    def address_for(self, user: UserProfile) -> str | None:
        return user.push_id or user.id

    async def send(self, address: str, rendered: dict[str, Any]) -> SendResult:
        color = {
            "critical": "red",
            "high": "red",
            "medium": "yellow",
            "low": "cyan",
        }.get(rendered.get("severity", ""), "white")

        content = Text()
        content.append(f"{rendered['message']}\n", style="white")
        if rendered.get("url"):
            content.append("\nDetails: ", style="dim")
            content.append(rendered["url"], style="cyan")

        self._console.print(Panel(
            content,
            title=f"[bold {color}]⚠ {rendered['title']}[/bold {color}]",
            subtitle=f"[dim]{rendered.get('severity', '').upper()} · {address}[/dim]",
            border_style=color,
        ))
        logger.info("Push notification displayed", recipient=address, title=rendered["title"])
        return SendResult(success=True, message_id=f"push_{int(time.time() * 1000)}")


def default_clients(settings: EngineSettings) -> dict[Channel, ChannelClient]:
    """Clients for every channel that can be configured from settings."""
    return {
        Channel.EMAIL: EmailClient(settings),
        Channel.DISCORD: DiscordClient(settings.discord_webhook_url),
        Channel.SLACK: SlackClient(settings.slack_webhook_url),
        Channel.WEBHOOK: WebhookClient(settings.webhook_url),
        Channel.PUSH: ConsolePushClient(),
    }
