from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from surplus_api.models.order import OrderStatusEnum, PaymentMethodEnum, PaymentStatusEnum


class ReservationRequest(BaseModel):
    offer_id: UUID
    quantity: int = Field(1, description="Units to reserve")
    payment_method: PaymentMethodEnum = PaymentMethodEnum.PIX


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    consumer_id: UUID
    offer_id: UUID
    restaurant_id: UUID
    quantity: int
    original_price: Decimal
    promotional_price: Decimal
    total_amount: Decimal
    platform_fee: Decimal
    restaurant_amount: Decimal
    status: OrderStatusEnum
    payment_method: PaymentMethodEnum
    payment_status: PaymentStatusEnum
    payment_id: str | None = None
    payment_checkout_url: str | None = None
    pix_qr_code: str | None = None
    pickup_code: str
    qr_code_data_url: str | None = None
    pickup_time: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int
    limit: int
    offset: int


class SalesSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    restaurant_id: UUID
    start: datetime | None = None
    end: datetime | None = None
    orders: int
    units: int
    gross_amount: Decimal
    platform_fees: Decimal
    net_amount: Decimal


class PickupCodeRequest(BaseModel):
    pickup_code: str = Field(..., min_length=1, max_length=16)


class PickupValidationResponse(BaseModel):
    order: OrderResponse
    package_type: str
    consumer_name: str | None = None
    pickup_start_time: datetime
    pickup_end_time: datetime


class PickupRedemptionResponse(BaseModel):
    order: OrderResponse
    already_redeemed: bool
