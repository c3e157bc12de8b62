from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.api.dependencies.identity import Actor, get_actor
from surplus_api.db.session import get_session
from surplus_api.models.notification import RecipientTypeEnum
from surplus_api.schemas.notification import (
    MarkAllReadResponse,
    NotificationFeedResponse,
    NotificationResponse,
)
from surplus_api.services.notifications import NotificationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def _recipient_type(actor: Actor) -> RecipientTypeEnum:
    return RecipientTypeEnum(actor.role.value)


@router.get("", response_model=NotificationFeedResponse)
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> NotificationFeedResponse:
    """Delivered notifications for the caller, newest first."""

    feed = await NotificationService(session).list_for_recipient(
        _recipient_type(actor),
        actor.id,
        unread_only=unread_only,
        limit=limit,
        offset=offset,
    )
    return NotificationFeedResponse(
        items=[NotificationResponse.model_validate(item) for item in feed.items],
        total=feed.total,
        unread_count=feed.unread_count,
        limit=feed.limit,
        offset=feed.offset,
    )


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: UUID,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> NotificationResponse:
    notification = await NotificationService(session).mark_read(_recipient_type(actor), actor.id, notification_id)
    return NotificationResponse.model_validate(notification)


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_notifications_read(
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> MarkAllReadResponse:
    updated = await NotificationService(session).mark_all_read(_recipient_type(actor), actor.id)
    return MarkAllReadResponse(updated=updated)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: UUID,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> Response:
    await NotificationService(session).delete(_recipient_type(actor), actor.id, notification_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
