from datetime import timedelta
from uuid import uuid4

import pytest

from surplus_api.domain.marketplace.errors import NotificationNotFoundError
from surplus_api.models.notification import NotificationTypeEnum, RecipientTypeEnum
from surplus_api.services.notifications import NotificationService, RenderedNotification

from conftest import NOW

CONSUMER = RecipientTypeEnum.CONSUMER


async def _emit(session_factory, recipient_id, dedup_key: str, *, deliver_after=None, recipient_type=CONSUMER) -> bool:
    async with session_factory() as session:
        created = await NotificationService(session).emit(
            recipient_type=recipient_type,
            recipient_id=recipient_id,
            notification_type=NotificationTypeEnum.ORDER_CONFIRMED,
            rendered=RenderedNotification(title="Order confirmed", message=f"Notice {dedup_key}"),
            dedup_key=dedup_key,
            deliver_after=deliver_after,
            now=NOW,
        )
        await session.commit()
        return created


@pytest.mark.asyncio
async def test_emit_skips_duplicate_keys(session_factory) -> None:
    recipient = uuid4()

    assert await _emit(session_factory, recipient, "order-confirmed:1") is True
    assert await _emit(session_factory, recipient, "order-confirmed:1") is False

    async with session_factory() as session:
        feed = await NotificationService(session).list_for_recipient(CONSUMER, recipient, now=NOW)
    assert feed.total == 1


@pytest.mark.asyncio
async def test_feed_hides_future_and_foreign_notifications(session_factory) -> None:
    recipient = uuid4()
    await _emit(session_factory, recipient, "now")
    await _emit(session_factory, recipient, "later", deliver_after=NOW + timedelta(hours=1))
    await _emit(session_factory, uuid4(), "someone-else")
    await _emit(session_factory, recipient, "same-id-other-role", recipient_type=RecipientTypeEnum.RESTAURANT)

    async with session_factory() as session:
        service = NotificationService(session)
        current = await service.list_for_recipient(CONSUMER, recipient, now=NOW)
        later = await service.list_for_recipient(CONSUMER, recipient, now=NOW + timedelta(hours=1))

    assert [item.message for item in current.items] == ["Notice now"]
    assert current.unread_count == 1
    assert [item.message for item in later.items] == ["Notice later", "Notice now"]
    assert later.total == 2


@pytest.mark.asyncio
async def test_mark_read_and_mark_all_read(session_factory) -> None:
    recipient = uuid4()
    for key in ("a", "b", "c"):
        await _emit(session_factory, recipient, key)
    await _emit(session_factory, recipient, "future", deliver_after=NOW + timedelta(days=1))

    async with session_factory() as session:
        service = NotificationService(session)
        feed = await service.list_for_recipient(CONSUMER, recipient, now=NOW)
        read = await service.mark_read(CONSUMER, recipient, feed.items[0].id)
        assert read.is_read is True

        unread = await service.list_for_recipient(CONSUMER, recipient, unread_only=True, now=NOW)
        assert unread.total == 2

        updated = await service.mark_all_read(CONSUMER, recipient, now=NOW)
        assert updated == 2

        after = await service.list_for_recipient(CONSUMER, recipient, now=NOW + timedelta(days=1))
    assert after.unread_count == 1
    assert after.total == 4


@pytest.mark.asyncio
async def test_delete_is_scoped_to_owner(session_factory) -> None:
    owner = uuid4()
    await _emit(session_factory, owner, "mine")

    async with session_factory() as session:
        service = NotificationService(session)
        notification = (await service.list_for_recipient(CONSUMER, owner, now=NOW)).items[0]

        with pytest.raises(NotificationNotFoundError):
            await service.mark_read(CONSUMER, uuid4(), notification.id)
        with pytest.raises(NotificationNotFoundError):
            await service.delete(RecipientTypeEnum.RESTAURANT, owner, notification.id)

        await service.delete(CONSUMER, owner, notification.id)
        remaining = await service.list_for_recipient(CONSUMER, owner, now=NOW)

        with pytest.raises(NotificationNotFoundError):
            await service.delete(CONSUMER, owner, notification.id)

    assert remaining.total == 0
