from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from surplus_api.db.base import Base
from surplus_api.domain.marketplace.clock import utcnow


class OrderStatusEnum(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class PaymentStatusEnum(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REFUSED = "REFUSED"
    REFUNDED = "REFUNDED"


class PaymentMethodEnum(str, Enum):
    PIX = "PIX"
    CREDIT_CARD = "CREDIT_CARD"


# Orders whose units are still held against the offer.
HOLDING_STATUSES = (
    OrderStatusEnum.PENDING_PAYMENT,
    OrderStatusEnum.CONFIRMED,
    OrderStatusEnum.READY_FOR_PICKUP,
    OrderStatusEnum.COMPLETED,
)


class Order(Base):
    __tablename__ = "orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    consumer_id = Column(UUID(as_uuid=True), ForeignKey("consumers.id", ondelete="CASCADE"), nullable=False, index=True)
    offer_id = Column(UUID(as_uuid=True), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False, index=True)
    restaurant_id = Column(UUID(as_uuid=True), ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    original_price = Column(Numeric(12, 2), nullable=False)
    promotional_price = Column(Numeric(12, 2), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    platform_fee = Column(Numeric(12, 2), nullable=False)
    restaurant_amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(SqlEnum(PaymentMethodEnum, name="payment_method_enum"), nullable=False)
    payment_status = Column(
        SqlEnum(PaymentStatusEnum, name="payment_status_enum"),
        nullable=False,
        default=PaymentStatusEnum.PENDING,
    )
    payment_id = Column(String(64), nullable=True, unique=True)
    payment_checkout_url = Column(Text, nullable=True)
    pix_qr_code = Column(Text, nullable=True)
    pickup_code = Column(String(16), nullable=False, unique=True)
    qr_code_data_url = Column(Text, nullable=True)
    status = Column(
        SqlEnum(OrderStatusEnum, name="order_status_enum"),
        nullable=False,
        default=OrderStatusEnum.PENDING_PAYMENT,
    )
    pickup_time = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_orders_quantity_positive"),
        Index("ix_orders_status_created_at", "status", "created_at"),
    )
