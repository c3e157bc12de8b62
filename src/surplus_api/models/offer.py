from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
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


class OfferStatusEnum(str, Enum):
    ACTIVE = "ACTIVE"
    SOLD_OUT = "SOLD_OUT"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class Offer(Base):
    __tablename__ = "offers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    restaurant_id = Column(UUID(as_uuid=True), ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    package_type = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    # Units published; never changes after creation.
    quantity = Column(Integer, nullable=False)
    available_quantity = Column(Integer, nullable=False)
    original_price = Column(Numeric(12, 2), nullable=False)
    promotional_price = Column(Numeric(12, 2), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False)
    pickup_start_time = Column(DateTime(timezone=True), nullable=False)
    pickup_end_time = Column(DateTime(timezone=True), nullable=False)
    is_vegetarian = Column(Boolean, nullable=False, default=False)
    is_vegan = Column(Boolean, nullable=False, default=False)
    status = Column(SqlEnum(OfferStatusEnum, name="offer_status_enum"), nullable=False, default=OfferStatusEnum.ACTIVE)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("available_quantity >= 0", name="ck_offers_available_non_negative"),
        CheckConstraint("available_quantity <= quantity", name="ck_offers_available_within_quantity"),
        Index("ix_offers_status_pickup_end", "status", "pickup_end_time"),
    )
