"""
Tests for channel clients.
"""

import json
import smtplib
from unittest.mock import MagicMock, patch

import httpx
import pytest

from watchtower.config import EngineSettings
from watchtower.monitoring.models import NotificationPayload
from watchtower.monitoring.store import UserProfile
from watchtower.notifications.channels import (
    ConsolePushClient,
    DiscordClient,
    EmailClient,
    SlackClient,
    WebhookClient,
    default_clients,
)
from watchtower.notifications.renderers import render_email, render_push


def mock_client(status_code: int, seen: list[httpx.Request] | None = None) -> httpx.AsyncClient:
    """httpx client answering every request with a fixed status."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, headers={"x-request-id": "req-42"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def user() -> UserProfile:
    """User with channel settings in both places."""
    return UserProfile(
        id="user-1",
        email="ops@example.com",
        slack_webhook_url="https://hooks.slack.test/direct",
        settings={"discord": {"webhook_url": "https://discord.test/from-settings"}},
    )


class TestAddresses:
    """Tests for destination lookup."""

    def test_email_address(self, user: UserProfile) -> None:
        """Test email goes to the profile address."""
        assert EmailClient(EngineSettings()).address_for(user) == "ops@example.com"

    def test_webhook_urls(self, user: UserProfile) -> None:
        """Test profile fields win over settings and defaults."""
        assert SlackClient("https://default").address_for(user) == "https://hooks.slack.test/direct"
        assert DiscordClient().address_for(user) == "https://discord.test/from-settings"
        assert WebhookClient("https://default").address_for(user) == "https://default"
        assert WebhookClient().address_for(user) is None

    def test_push_address(self, user: UserProfile) -> None:
        """Test push falls back to the user id."""
        assert ConsolePushClient(console=MagicMock()).address_for(user) == "user-1"

    def test_default_clients(self) -> None:
        """Test every non-SMS channel gets a client."""
        clients = default_clients(EngineSettings())
        assert {c.value for c in clients} == {"EMAIL", "DISCORD", "SLACK", "WEBHOOK", "PUSH"}


class TestWebhookClients:
    """Tests for JSON webhook delivery."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        """Test a 2xx response is a success with the request id."""
        seen: list[httpx.Request] = []
        client = WebhookClient(client=mock_client(200, seen))

        result = await client.send("https://hooks.test/endpoint", {"title": "Alert"})
        await client.close()

        assert result.success
        assert result.message_id == "req-42"
        assert json.loads(seen[0].content) == {"title": "Alert"}
        assert seen[0].headers["User-Agent"] == "WatchTower Pro/1.0"

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self) -> None:
        """Test 5xx responses may be retried."""
        result = await DiscordClient(client=mock_client(503)).send("https://discord.test", {})
        assert not result.success
        assert result.retryable
        assert result.error == "DISCORD API error: 503"

    @pytest.mark.asyncio
    async def test_rate_limit_is_retryable(self) -> None:
        """Test 429 responses may be retried."""
        result = await SlackClient(client=mock_client(429)).send("https://slack.test", {})
        assert result.retryable

    @pytest.mark.asyncio
    async def test_client_error_is_terminal(self) -> None:
        """Test other 4xx responses are not retried."""
        result = await SlackClient(client=mock_client(404)).send("https://slack.test", {})
        assert not result.success
        assert not result.retryable

    @pytest.mark.asyncio
    async def test_transport_error_is_retryable(self) -> None:
        """Test connection failures may be retried."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = SlackClient(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        result = await client.send("https://slack.test", {})
        assert not result.success
        assert result.retryable


class TestEmailClient:
    """Tests for SMTP delivery."""

    @pytest.mark.asyncio
    async def test_not_configured(self) -> None:
        """Test a missing SMTP host fails without retry."""
        client = EmailClient(EngineSettings(smtp_host=None, smtp_from=None, smtp_user=None))
        content = render_email(NotificationPayload(title="t", message="m"))
        result = await client.send("ops@example.com", content)
        assert not result.success
        assert not result.retryable
        assert result.error == "Email service not configured"

    @pytest.mark.asyncio
    async def test_send(self) -> None:
        """Test a message is sent over SMTP with TLS and login."""
        settings = EngineSettings(
            smtp_host="smtp.test",
            smtp_user="bot",
            smtp_password="secret",
            smtp_from="alerts@watchtower.test",
        )
        content = render_email(NotificationPayload(title="Alert: Down", message="m"))

        with patch("watchtower.notifications.channels.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            result = await EmailClient(settings).send("ops@example.com", content)

        assert result.success
        assert result.message_id
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot", "secret")
        message = server.send_message.call_args[0][0]
        assert message["To"] == "ops@example.com"
        assert message["Subject"] == "Alert: Down"

    @pytest.mark.asyncio
    async def test_smtp_error_is_retryable(self) -> None:
        """Test SMTP failures may be retried."""
        settings = EngineSettings(smtp_host="smtp.test", smtp_from="alerts@watchtower.test")
        content = render_email(NotificationPayload(title="t", message="m"))

        with patch("watchtower.notifications.channels.smtplib.SMTP") as smtp_cls:
            smtp_cls.side_effect = smtplib.SMTPConnectError(421, "busy")
            result = await EmailClient(settings).send("ops@example.com", content)

        assert not result.success
        assert result.retryable


class TestConsolePushClient:
    """Tests for the terminal push channel."""

    @pytest.mark.asyncio
    async def test_prints_panel(self) -> None:
        """Test a push notification is printed."""
        console = MagicMock()
        client = ConsolePushClient(console=console)
        rendered = render_push(NotificationPayload(title="Alert", message="Site down", url="https://x"))

        result = await client.send("user-1", rendered)

        assert result.success
        assert result.message_id.startswith("push_")
        console.print.assert_called_once()
