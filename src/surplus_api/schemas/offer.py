from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from surplus_api.models.offer import OfferStatusEnum


class OfferCreateRequest(BaseModel):
    package_type: str = Field(..., min_length=1, max_length=120)
    description: str | None = Field(None, max_length=2000)
    quantity: int = Field(..., description="Units offered (1-50)")
    original_price: Decimal = Field(..., description="Price before discount")
    promotional_price: Decimal = Field(..., description="Price charged per unit")
    pickup_start_time: datetime
    pickup_end_time: datetime
    is_vegetarian: bool = False
    is_vegan: bool = False


class RestaurantSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    address: str | None = None
    latitude: float
    longitude: float
    average_rating: float
    total_ratings: int


class OfferResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    restaurant_id: UUID
    package_type: str
    description: str | None = None
    quantity: int
    available_quantity: int
    original_price: Decimal
    promotional_price: Decimal
    discount_percent: Decimal
    pickup_start_time: datetime
    pickup_end_time: datetime
    is_vegetarian: bool
    is_vegan: bool
    status: OfferStatusEnum
    cancelled_at: datetime | None = None
    created_at: datetime


class OfferHitResponse(BaseModel):
    offer: OfferResponse
    restaurant: RestaurantSummary
    distance_km: float | None = None


class OfferSearchResponse(BaseModel):
    items: list[OfferHitResponse]
    total: int
    limit: int
    offset: int


class OfferCancellationResponse(BaseModel):
    offer: OfferResponse
    cancelled_orders: list[UUID]
    credited_total: Decimal
