from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, Integer, JSON, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from surplus_api.db.base import Base
from surplus_api.domain.marketplace.clock import utcnow


class PaymentNotificationStatusEnum(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"


class PaymentNotificationRecord(Base):
    """Inbox row for every gateway notification the webhook acknowledged."""

    __tablename__ = "payment_notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    kind = Column(String(64), nullable=False)
    payment_id = Column(String(64), nullable=True, index=True)
    action = Column(String(64), nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(
        SqlEnum(PaymentNotificationStatusEnum, name="payment_notification_status_enum"),
        nullable=False,
        default=PaymentNotificationStatusEnum.RECEIVED,
    )
    outcome = Column(String(64), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    received_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
