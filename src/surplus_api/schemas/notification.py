from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from surplus_api.models.notification import NotificationTypeEnum


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: NotificationTypeEnum
    title: str
    message: str
    related_id: UUID | None = None
    is_read: bool
    created_at: datetime


class NotificationFeedResponse(BaseModel):
    items: list[NotificationResponse]
    total: int
    unread_count: int
    limit: int
    offset: int


class MarkAllReadResponse(BaseModel):
    updated: int
