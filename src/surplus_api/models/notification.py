from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Enum as SqlEnum, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from surplus_api.db.base import Base
from surplus_api.domain.marketplace.clock import utcnow


class RecipientTypeEnum(str, Enum):
    CONSUMER = "consumer"
    RESTAURANT = "restaurant"


class NotificationTypeEnum(str, Enum):
    ORDER_CONFIRMED = "ORDER_CONFIRMED"
    NEW_ORDER = "NEW_ORDER"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    PAYMENT_REFUSED = "PAYMENT_REFUSED"
    NO_SHOW_WARNING = "NO_SHOW_WARNING"
    ACCOUNT_BLOCKED = "ACCOUNT_BLOCKED"
    ORDER_NO_SHOW = "ORDER_NO_SHOW"
    PICKUP_REMINDER = "PICKUP_REMINDER"
    REVIEW_REQUEST = "REVIEW_REQUEST"
    PAYOUT_SENT = "PAYOUT_SENT"
    LOW_RATING_ALERT = "LOW_RATING_ALERT"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    recipient_type = Column(SqlEnum(RecipientTypeEnum, name="notification_recipient_type_enum"), nullable=False)
    recipient_id = Column(UUID(as_uuid=True), nullable=False)
    type = Column(SqlEnum(NotificationTypeEnum, name="notification_type_enum"), nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    related_id = Column(UUID(as_uuid=True), nullable=True)
    # One row per (event, recipient); duplicates are dropped at insert time.
    dedup_key = Column(String(255), nullable=False, unique=True)
    deliver_after = Column(DateTime(timezone=True), nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_notifications_recipient", "recipient_type", "recipient_id", "deliver_after"),
    )
