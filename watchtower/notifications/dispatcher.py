"""
Notification Dispatcher

Filters an alert's channels by plan, renders and sends per channel, records
every outcome and defers retryable failures to a retry queue.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

import structlog
from pydantic import BaseModel

from watchtower.monitoring.errors import ChannelNotConfiguredError, NotificationError
from watchtower.monitoring.models import (
    Channel,
    NotificationPayload,
    NotificationRecord,
    NotificationStatus,
)
from watchtower.monitoring.retry import RetryPolicy
from watchtower.notifications.channels import ChannelClient, SendResult
from watchtower.notifications.entitlements import EntitlementGate, PlanType, channel_allowed
from watchtower.notifications.renderers import render

if TYPE_CHECKING:
    from watchtower.monitoring.store import Store, UserProfile

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetryEntry(BaseModel):
    """A deferred re-delivery of one channel."""

    user_id: str
    alert_id: str
    incident_id: str | None = None
    channel: Channel
    payload: NotificationPayload
    attempt: int  # The attempt number this entry will make
    due_at: datetime
    last_error: str | None = None


class NotificationRetryQueue:
    """In-process queue of deferred channel re-deliveries."""

    def __init__(self) -> None:
        self._entries: list[RetryEntry] = []
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def enqueue(self, entry: RetryEntry) -> None:
        async with self._lock:
            self._entries.append(entry)
            self._entries.sort(key=lambda e: e.due_at)

    async def pop_due(self, now: datetime) -> list[RetryEntry]:
        """Remove and return entries due at or before ``now``."""
        async with self._lock:
            due = [e for e in self._entries if e.due_at <= now]
            self._entries = [e for e in self._entries if e.due_at > now]
        return due

    def pending(self) -> list[RetryEntry]:
        return list(self._entries)


class NotificationDispatcher:
    """
    Delivers alert notifications across channels.

    Filtering by entitlement happens before any render or send; filtered
    channels are recorded as SKIPPED.
    """

    def __init__(
        self,
        store: Store,
        gate: EntitlementGate,
        clients: dict[Channel, ChannelClient] | None = None,
        retry_policy: RetryPolicy | None = None,
        retry_queue: NotificationRetryQueue | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            store: Where notification records are appended
            gate: Plan gate deciding which channels a user may use
            clients: Client per channel; channels without one are "not configured"
            retry_policy: Policy for retryable send failures
            retry_queue: Queue for deferred re-deliveries
            clock: Source of "now", injectable for tests
        """
        self._store = store
        self._gate = gate
        self._clients = clients or {}
        self._retry = retry_policy or RetryPolicy(max_attempts=3, delay_seconds=120)
        self.retry_queue = retry_queue or NotificationRetryQueue()
        self._clock = clock or _utcnow

    async def dispatch(
        self,
        user_id: str,
        alert_id: str,
        channels: list[Channel],
        payload: NotificationPayload,
        incident_id: str | None = None,
    ) -> list[NotificationRecord]:
        """
        Send a notification on each of an alert's channels.

        Args:
            user_id: Owner of the alert
            alert_id: Alert that triggered
            channels: Requested channels
            payload: Channel-neutral content
            incident_id: Incident this notification belongs to

        Returns:
            One record per requested channel
        """
        requested = list(dict.fromkeys(channels))
        try:
            allowed = set(await self._gate.allowed_channels(user_id, requested))
        except Exception as e:
            logger.error("Entitlement lookup failed", user_id=user_id, error=str(e))
            allowed = {c for c in requested if channel_allowed(PlanType.FREE, c)}
        try:
            user = await self._store.get_user(user_id)
        except Exception as e:
            logger.error("User lookup failed", user_id=user_id, error=str(e))
            user = None

        records: list[NotificationRecord] = []
        for channel in requested:
            if channel not in allowed:
                record = NotificationRecord(
                    user_id=user_id,
                    alert_id=alert_id,
                    incident_id=incident_id,
                    channel=channel,
                    recipient=user_id,
                    status=NotificationStatus.SKIPPED,
                    subject=payload.title,
                    content=payload.message,
                    metadata={"severity": payload.severity.value, "reason": "not_in_plan"},
                    error=f"{channel.value} is not available on the user's plan",
                )
                await self._save_record(record)
                records.append(record)
                logger.info("Channel filtered by plan", user_id=user_id, channel=channel.value)
                continue

            record = await self._deliver(user_id, user, alert_id, incident_id, channel, payload, attempt=1)
            records.append(record)
            await self._schedule_retry_if_needed(record, payload)

        logger.info(
            "Notification dispatched",
            alert_id=alert_id,
            incident_id=incident_id,
            sent=sum(1 for r in records if r.status == NotificationStatus.SENT),
            failed=sum(1 for r in records if r.status == NotificationStatus.FAILED),
            skipped=sum(1 for r in records if r.status == NotificationStatus.SKIPPED),
        )
        return records

    async def process_retries(self) -> list[NotificationRecord]:
        """
        Re-send queued deliveries that are due.

        Entries that fail again are re-queued until the retry policy is
        exhausted.

        Returns:
            Records for the re-delivery attempts made
        """
        due = await self.retry_queue.pop_due(self._clock())
        records: list[NotificationRecord] = []

        for entry in due:
            try:
                user = await self._store.get_user(entry.user_id)
            except Exception as e:
                # No attempt was made, so the entry keeps its attempt number
                logger.error(
                    "User lookup failed, retry deferred",
                    user_id=entry.user_id,
                    channel=entry.channel.value,
                    attempt=entry.attempt,
                    error=str(e),
                )
                await self.retry_queue.enqueue(
                    entry.model_copy(
                        update={
                            "due_at": self._retry.next_attempt_at(self._clock()),
                            "last_error": str(e),
                        }
                    )
                )
                continue
            record = await self._deliver(
                entry.user_id,
                user,
                entry.alert_id,
                entry.incident_id,
                entry.channel,
                entry.payload,
                attempt=entry.attempt,
            )
            records.append(record)
            await self._schedule_retry_if_needed(record, entry.payload)

        if records:
            logger.info(
                "Processed notification retries",
                attempted=len(records),
                still_queued=len(self.retry_queue),
            )
        return records

    async def _deliver(
        self,
        user_id: str,
        user: UserProfile | None,
        alert_id: str,
        incident_id: str | None,
        channel: Channel,
        payload: NotificationPayload,
        attempt: int,
    ) -> NotificationRecord:
        """Render and send on one channel, then record the outcome."""
        address: str | None = None
        try:
            client = self._clients.get(channel)
            if client is None:
                raise ChannelNotConfiguredError(channel.value)
            if user is not None:
                address = client.address_for(user)
            if not address:
                raise ChannelNotConfiguredError(
                    channel.value, f"No {channel.value.lower()} destination configured for user"
                )
            result = await client.send(address, render(channel, payload))
        except NotificationError as e:
            result = SendResult(success=False, retryable=e.retryable, error=str(e))
        except Exception as e:
            logger.warning("Channel client raised", channel=channel.value, error=str(e))
            result = SendResult(success=False, retryable=True, error=str(e) or type(e).__name__)

        now = self._clock()
        record = NotificationRecord(
            user_id=user_id,
            alert_id=alert_id,
            incident_id=incident_id,
            channel=channel,
            recipient=address or user_id,
            status=NotificationStatus.SENT if result.success else NotificationStatus.FAILED,
            subject=payload.title,
            content=payload.message,
            metadata={
                "severity": payload.severity.value,
                "message_id": result.message_id,
                **payload.metadata,
            },
            error=result.error,
            retryable=(not result.success) and result.retryable,
            attempt=attempt,
            created_at=now,
            sent_at=now if result.success else None,
        )

        if result.success:
            logger.info("Notification sent", channel=channel.value, alert_id=alert_id, attempt=attempt)
        else:
            logger.warning(
                "Notification failed",
                channel=channel.value,
                alert_id=alert_id,
                attempt=attempt,
                retryable=record.retryable,
                error=result.error,
            )

        await self._save_record(record)
        return record

    async def _schedule_retry_if_needed(
        self,
        record: NotificationRecord,
        payload: NotificationPayload,
    ) -> None:
        if record.status != NotificationStatus.FAILED or not record.retryable:
            return
        if not self._retry.should_retry(record.attempt):
            logger.error(
                "Notification retries exhausted",
                channel=record.channel.value,
                alert_id=record.alert_id,
                attempts=record.attempt,
            )
            return

        entry = RetryEntry(
            user_id=record.user_id,
            alert_id=record.alert_id,
            incident_id=record.incident_id,
            channel=record.channel,
            payload=payload,
            attempt=record.attempt + 1,
            due_at=self._retry.next_attempt_at(self._clock()),
            last_error=record.error,
        )
        await self.retry_queue.enqueue(entry)
        logger.info(
            "Notification retry scheduled",
            channel=record.channel.value,
            alert_id=record.alert_id,
            attempt=entry.attempt,
            due_at=entry.due_at.isoformat(),
        )

    async def _save_record(self, record: NotificationRecord) -> None:
        try:
            await self._store.save_notification_record(record)
        except Exception as e:
            logger.error(
                "Failed to save notification record",
                channel=record.channel.value,
                alert_id=record.alert_id,
                error=str(e),
            )
