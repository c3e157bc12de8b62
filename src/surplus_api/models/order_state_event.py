"""Order state transition audit log models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, JSON, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from surplus_api.db.base import Base
from surplus_api.domain.marketplace.clock import utcnow


class OrderStateEventTypeEnum(str, Enum):
    """Supported order timeline event categories."""

    STATE_CHANGE = "state_change"
    PAYMENT_UPDATE = "payment_update"
    REFUND_REQUESTED = "refund_requested"
    REFUND_FAILED = "refund_failed"
    PAYMENT_INITIATION_FAILED = "payment_initiation_failed"
    CREDIT_GRANTED = "credit_granted"


class OrderStateActorTypeEnum(str, Enum):
    """Identity of the actor emitting the order event."""

    SYSTEM = "system"
    CONSUMER = "consumer"
    RESTAURANT = "restaurant"
    GATEWAY = "gateway"
    SCHEDULER = "scheduler"


class OrderStateEvent(Base):
    """Audit log entry capturing every order state change, refund and penalty."""

    __tablename__ = "order_state_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(
        SqlEnum(OrderStateEventTypeEnum, name="order_state_event_type_enum"),
        nullable=False,
    )
    actor_type = Column(
        SqlEnum(OrderStateActorTypeEnum, name="order_state_actor_type_enum"),
        nullable=True,
    )
    actor_id = Column(String(255), nullable=True)
    from_status = Column(String(64), nullable=True)
    to_status = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
