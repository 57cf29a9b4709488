"""
Tests for plan entitlements.
"""

import pytest

from watchtower.monitoring.models import Channel
from watchtower.monitoring.store import InMemoryStore, UserProfile
from watchtower.notifications.entitlements import (
    PlanGate,
    PlanType,
    channel_allowed,
    has_feature,
)


class TestChannelRules:
    """Tests for the per-plan channel rule."""

    def test_email_and_push_everywhere(self) -> None:
        """Test basic channels are on every plan."""
        for plan in PlanType:
            assert channel_allowed(plan, Channel.EMAIL)
            assert channel_allowed(plan, Channel.PUSH)

    def test_advanced_channels(self) -> None:
        """Test chat and webhook channels need advanced notifications."""
        for channel in (Channel.SLACK, Channel.DISCORD, Channel.WEBHOOK):
            assert not channel_allowed(PlanType.FREE, channel)
            assert not channel_allowed(PlanType.STARTER, channel)
            assert channel_allowed(PlanType.PROFESSIONAL, channel)
            assert channel_allowed(PlanType.ENTERPRISE, channel)

    def test_sms_enterprise_only(self) -> None:
        """Test SMS is Enterprise only."""
        assert channel_allowed(PlanType.ENTERPRISE, Channel.SMS)
        assert not channel_allowed(PlanType.PROFESSIONAL, Channel.SMS)

    def test_unknown_channel(self) -> None:
        """Test unknown channel names are refused."""
        assert not channel_allowed(PlanType.ENTERPRISE, "PAGER")

    def test_has_feature(self) -> None:
        """Test feature lookups."""
        assert has_feature(PlanType.STARTER, "business_metrics")
        assert not has_feature(PlanType.FREE, "business_metrics")
        assert not has_feature(PlanType.ENTERPRISE, "teleportation")


class TestPlanGate:
    """Tests for the store-backed gate."""

    @pytest.mark.asyncio
    async def test_allowed_channels_keeps_order(self, store: InMemoryStore, pro_user: UserProfile) -> None:
        """Test filtering keeps the requested order."""
        await store.save_user(pro_user)
        gate = PlanGate(store)
        allowed = await gate.allowed_channels(
            pro_user.id, [Channel.SMS, Channel.DISCORD, Channel.EMAIL]
        )
        assert allowed == [Channel.DISCORD, Channel.EMAIL]

    @pytest.mark.asyncio
    async def test_unknown_user_gets_default_plan(self, store: InMemoryStore) -> None:
        """Test unknown users are treated as free."""
        gate = PlanGate(store)
        assert await gate.plan_for("nobody") == PlanType.FREE
        assert await gate.allowed_channels("nobody", [Channel.SLACK]) == []

    @pytest.mark.asyncio
    async def test_interval_minimums(self, store: InMemoryStore, free_user: UserProfile, pro_user: UserProfile) -> None:
        """Test minimum check intervals per plan."""
        await store.save_user(free_user)
        await store.save_user(pro_user)
        gate = PlanGate(store)

        assert not await gate.can_run_at_interval(free_user.id, 300)
        assert await gate.can_run_at_interval(free_user.id, 3600)
        assert await gate.can_run_at_interval(pro_user.id, 300)
        assert not await gate.can_run_at_interval(pro_user.id, 60)
