"""Persisted notification outbox and per-recipient feed."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.domain.marketplace.clock import resolve_now
from surplus_api.domain.marketplace.errors import NotificationNotFoundError
from surplus_api.models.notification import Notification, NotificationTypeEnum, RecipientTypeEnum

from .templates import RenderedNotification


@dataclass(slots=True)
class NotificationFeed:
    items: Sequence[Notification]
    total: int
    unread_count: int
    limit: int
    offset: int


class NotificationService:
    """Write notifications into the outbox and serve recipient feeds.

    ``emit`` runs inside the caller's unit of work so a notification is only
    visible once the state change that produced it commits. Each row carries a
    ``dedup_key``; inserting a key that already exists is silently skipped, which
    keeps overlapping job runs and replayed webhooks from notifying twice.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def emit(
        self,
        *,
        recipient_type: RecipientTypeEnum,
        recipient_id: UUID,
        notification_type: NotificationTypeEnum,
        rendered: RenderedNotification,
        dedup_key: str,
        related_id: UUID | None = None,
        deliver_after: datetime | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Insert a notification unless ``dedup_key`` was already used; return ``True`` if stored."""

        values = {
            "recipient_type": recipient_type,
            "recipient_id": recipient_id,
            "type": notification_type,
            "title": rendered.title,
            "message": rendered.message,
            "related_id": related_id,
            "dedup_key": dedup_key,
            "deliver_after": deliver_after or resolve_now(now),
            "is_read": False,
        }
        result = await self._session.execute(self._insert_ignoring_duplicates(values))
        created = result.rowcount == 1
        if created:
            logger.info(
                "Notification queued",
                recipient_type=recipient_type.value,
                recipient_id=str(recipient_id),
                notification_type=notification_type.value,
                dedup_key=dedup_key,
            )
        else:
            logger.debug("Duplicate notification skipped", dedup_key=dedup_key)
        return created

    def _insert_ignoring_duplicates(self, values: dict):
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(Notification).values(**values).on_conflict_do_nothing(index_elements=["dedup_key"])
        if dialect == "sqlite":
            return sqlite_insert(Notification).values(**values).on_conflict_do_nothing(index_elements=["dedup_key"])
        return insert(Notification).values(**values)

    async def list_for_recipient(
        self,
        recipient_type: RecipientTypeEnum,
        recipient_id: UUID,
        *,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0,
        now: datetime | None = None,
    ) -> NotificationFeed:
        current = resolve_now(now)
        visible = (
            Notification.recipient_type == recipient_type,
            Notification.recipient_id == recipient_id,
            Notification.deliver_after <= current,
        )
        filters = visible + ((Notification.is_read.is_(False),) if unread_only else ())

        stmt = (
            select(Notification)
            .where(*filters)
            .order_by(Notification.deliver_after.desc(), Notification.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        items = (await self._session.execute(stmt)).scalars().all()
        total = await self._session.scalar(select(func.count()).select_from(Notification).where(*filters))
        unread = await self._session.scalar(
            select(func.count())
            .select_from(Notification)
            .where(*visible, Notification.is_read.is_(False))
        )
        return NotificationFeed(
            items=items,
            total=int(total or 0),
            unread_count=int(unread or 0),
            limit=limit,
            offset=offset,
        )

    async def mark_read(self, recipient_type: RecipientTypeEnum, recipient_id: UUID, notification_id: UUID) -> Notification:
        notification = await self._get_owned(recipient_type, recipient_id, notification_id)
        notification.is_read = True
        await self._session.commit()
        return notification

    async def mark_all_read(
        self,
        recipient_type: RecipientTypeEnum,
        recipient_id: UUID,
        *,
        now: datetime | None = None,
    ) -> int:
        stmt = (
            update(Notification)
            .where(
                Notification.recipient_type == recipient_type,
                Notification.recipient_id == recipient_id,
                Notification.deliver_after <= resolve_now(now),
                Notification.is_read.is_(False),
            )
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.commit()
        return result.rowcount or 0

    async def delete(self, recipient_type: RecipientTypeEnum, recipient_id: UUID, notification_id: UUID) -> None:
        notification = await self._get_owned(recipient_type, recipient_id, notification_id)
        await self._session.delete(notification)
        await self._session.commit()

    async def _get_owned(
        self,
        recipient_type: RecipientTypeEnum,
        recipient_id: UUID,
        notification_id: UUID,
    ) -> Notification:
        notification = await self._session.get(Notification, notification_id)
        if (
            notification is None
            or notification.recipient_type != recipient_type
            or notification.recipient_id != recipient_id
        ):
            raise NotificationNotFoundError("Notification not found", notification_id=str(notification_id))
        return notification


__all__ = ["NotificationFeed", "NotificationService"]
