from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Index, Numeric, func
from sqlalchemy.dialects.postgresql import UUID

from surplus_api.db.base import Base
from surplus_api.domain.marketplace.clock import utcnow


class TransactionStatusEnum(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    PAID = "paid"


class Transaction(Base):
    """Financial record created once per approved order."""

    __tablename__ = "transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True)
    restaurant_id = Column(UUID(as_uuid=True), ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    platform_fee = Column(Numeric(12, 2), nullable=False)
    restaurant_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(
        SqlEnum(TransactionStatusEnum, name="transaction_status_enum"),
        nullable=False,
        default=TransactionStatusEnum.PENDING,
    )
    processed_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (Index("ix_transactions_status_processed_at", "status", "processed_at"),)
