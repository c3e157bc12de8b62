"""No-show counters and temporary reservation blocks kept on the consumer row."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from loguru import logger
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.domain.marketplace.clock import ensure_utc, resolve_now
from surplus_api.domain.marketplace.errors import BlockedConsumerError, ConsumerNotFoundError
from surplus_api.domain.marketplace.rules import NO_SHOW_BLOCK_DURATION, NO_SHOW_BLOCK_THRESHOLD
from surplus_api.models.consumer import Consumer
from surplus_api.models.notification import NotificationTypeEnum, RecipientTypeEnum
from surplus_api.services.notifications import NotificationService
from surplus_api.services.notifications.templates import render_account_blocked, render_no_show_warning


@dataclass
class PenaltyState:
    """Represents the penalty state for a consumer."""

    failed_pickups: int
    blocked_until: datetime | None

    @property
    def blocked(self) -> bool:
        return self.blocked_until is not None


class PenaltyService:
    """Track missed pickups and block consumers who reach the threshold."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        notifications: NotificationService | None = None,
        threshold: int = NO_SHOW_BLOCK_THRESHOLD,
    ) -> None:
        self._session = session
        self._notifications = notifications or NotificationService(session)
        self._threshold = threshold

    async def ensure_can_reserve(self, consumer_id: UUID, *, now: datetime | None = None) -> Consumer:
        """Return the consumer, raising if they are missing or currently blocked."""

        current = resolve_now(now)
        consumer = await self._session.get(Consumer, consumer_id)
        if consumer is None or not consumer.is_active:
            raise ConsumerNotFoundError("Consumer not found", consumer_id=str(consumer_id))
        if consumer.blocked_until is not None and ensure_utc(consumer.blocked_until) > current:
            raise BlockedConsumerError(
                "Consumer is blocked from making reservations",
                consumer_id=str(consumer_id),
                blocked_until=ensure_utc(consumer.blocked_until),
            )
        return consumer

    async def record_no_show(self, consumer_id: UUID, *, order_id: UUID, now: datetime | None = None) -> PenaltyState:
        """Increment the missed pickup counter and block at the threshold.

        Runs inside the caller's transaction; the no-show transition that
        triggered it is what guarantees a single increment per order.
        """

        current = resolve_now(now)
        await self._session.execute(
            update(Consumer)
            .where(Consumer.id == consumer_id)
            .values(failed_pickups=Consumer.failed_pickups + 1, updated_at=current)
            .execution_options(synchronize_session=False)
        )
        consumer = await self._session.get(Consumer, consumer_id, populate_existing=True)
        if consumer is None:
            raise ConsumerNotFoundError("Consumer not found", consumer_id=str(consumer_id))

        count = consumer.failed_pickups
        if count >= self._threshold:
            blocked_until = current + NO_SHOW_BLOCK_DURATION
            consumer.blocked_until = blocked_until
            await self._notifications.emit(
                recipient_type=RecipientTypeEnum.CONSUMER,
                recipient_id=consumer.id,
                notification_type=NotificationTypeEnum.ACCOUNT_BLOCKED,
                rendered=render_account_blocked(blocked_until=blocked_until),
                related_id=order_id,
                dedup_key=f"account-blocked:{order_id}",
                now=current,
            )
            logger.warning(
                "Consumer blocked after missed pickups",
                consumer_id=str(consumer_id),
                failed_pickups=count,
                blocked_until=blocked_until.isoformat(),
            )
            return PenaltyState(failed_pickups=count, blocked_until=blocked_until)

        await self._notifications.emit(
            recipient_type=RecipientTypeEnum.CONSUMER,
            recipient_id=consumer.id,
            notification_type=NotificationTypeEnum.NO_SHOW_WARNING,
            rendered=render_no_show_warning(failed_pickups=count),
            related_id=order_id,
            dedup_key=f"no-show-warning:{order_id}",
            now=current,
        )
        logger.info("Consumer missed a pickup", consumer_id=str(consumer_id), failed_pickups=count)
        return PenaltyState(failed_pickups=count, blocked_until=None)

    async def unblock_expired(self, *, now: datetime | None = None) -> int:
        """Clear elapsed blocks and reset their counters; returns the number of consumers released."""

        current = resolve_now(now)
        result = await self._session.execute(
            update(Consumer)
            .where(Consumer.blocked_until.is_not(None), Consumer.blocked_until <= current)
            .values(blocked_until=None, failed_pickups=0, updated_at=current)
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount or 0
        if released:
            logger.info("Expired consumer blocks cleared", consumers=released)
        return released


__all__ = ["PenaltyService", "PenaltyState"]
