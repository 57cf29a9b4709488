"""
Notifications

Plan gating, channel rendering and delivery for alert notifications.
"""

from watchtower.notifications.entitlements import (
    PLAN_CONFIG,
    PlanGate,
    PlanType,
    channel_allowed,
)
from watchtower.notifications.channels import (
    ChannelClient,
    ConsolePushClient,
    DiscordClient,
    EmailClient,
    SendResult,
    SlackClient,
    WebhookClient,
    default_clients,
)
from watchtower.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationRetryQueue,
)

__all__ = [
    # Entitlements
    "PLAN_CONFIG",
    "PlanGate",
    "PlanType",
    "channel_allowed",
    # Channels
    "ChannelClient",
    "ConsolePushClient",
    "DiscordClient",
    "EmailClient",
    "SendResult",
    "SlackClient",
    "WebhookClient",
    "default_clients",
    # Dispatcher
    "NotificationDispatcher",
    "NotificationRetryQueue",
]
