"""
Plan Entitlements

Plan tiers and the gate that decides which notification channels and check
intervals a user may use.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

import structlog

if TYPE_CHECKING:
    from watchtower.monitoring.models import Channel
    from watchtower.monitoring.store import UserProfile

logger = structlog.get_logger(__name__)


class PlanType(str, Enum):
    """Subscription tiers."""

    FREE = "FREE"
    STARTER = "STARTER"
    PROFESSIONAL = "PROFESSIONAL"
    ENTERPRISE = "ENTERPRISE"


PLAN_CONFIG: dict[PlanType, dict[str, Any]] = {
    PlanType.FREE: {
        "name": "Free",
        "monitors": 3,
        "min_interval": 3600,  # seconds
        "alerts": 1,
        "features": {
            "advanced_notifications": False,
            "business_metrics": False,
            "custom_webhooks": False,
        },
    },
    PlanType.STARTER: {
        "name": "Basic",
        "monitors": 25,
        "min_interval": 600,
        "alerts": 10,
        "features": {
            "advanced_notifications": False,
            "business_metrics": True,
            "custom_webhooks": False,
        },
    },
    PlanType.PROFESSIONAL: {
        "name": "Pro",
        "monitors": 100,
        "min_interval": 300,
        "alerts": 50,
        "features": {
            "advanced_notifications": True,
            "business_metrics": True,
            "custom_webhooks": True,
        },
    },
    PlanType.ENTERPRISE: {
        "name": "Enterprise",
        "monitors": -1,  # unlimited
        "min_interval": 60,
        "alerts": -1,
        "features": {
            "advanced_notifications": True,
            "business_metrics": True,
            "custom_webhooks": True,
        },
    },
}


def has_feature(plan: PlanType, feature: str) -> bool:
    """Whether a plan includes a feature."""
    return bool(PLAN_CONFIG[plan]["features"].get(feature, False))


def channel_allowed(plan: PlanType, channel: Channel | str) -> bool:
    """
    Channel entitlement rule.

    EMAIL and PUSH are available on every plan; SLACK, DISCORD and WEBHOOK
    need advanced notifications; SMS is Enterprise only.
    """
    name = channel.value if isinstance(channel, Enum) else str(channel)
    if name in ("EMAIL", "PUSH"):
        return True
    if name in ("SLACK", "DISCORD", "WEBHOOK"):
        return has_feature(plan, "advanced_notifications")
    if name == "SMS":
        return plan == PlanType.ENTERPRISE
    return False


class UserDirectory(Protocol):
    """Anything that can look up a user profile."""

    async def get_user(self, user_id: str) -> UserProfile | None: ...


class EntitlementGate(Protocol):
    """Plan gate consulted by the dispatcher and at monitor admission."""

    async def allowed_channels(self, user_id: str, requested: list[Channel]) -> list[Channel]: ...

    async def can_run_at_interval(self, user_id: str, seconds: int) -> bool: ...


class PlanGate:
    """Entitlement gate backed by the user's plan."""

    def __init__(self, users: UserDirectory, default_plan: PlanType = PlanType.FREE) -> None:
        self._users = users
        self._default_plan = default_plan

    async def plan_for(self, user_id: str) -> PlanType:
        user = await self._users.get_user(user_id)
        if user is None:
            logger.warning("Unknown user, using default plan", user_id=user_id)
            return self._default_plan
        return user.plan

    async def allowed_channels(self, user_id: str, requested: list[Channel]) -> list[Channel]:
        """Filter requested channels down to those the user's plan permits."""
        plan = await self.plan_for(user_id)
        return [c for c in requested if channel_allowed(plan, c)]

    async def can_run_at_interval(self, user_id: str, seconds: int) -> bool:
        """Whether the user's plan allows checks this frequent."""
        plan = await self.plan_for(user_id)
        return seconds >= PLAN_CONFIG[plan]["min_interval"]
