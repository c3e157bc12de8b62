from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ReviewCreateRequest(BaseModel):
    order_id: UUID
    rating: int = Field(..., description="1 to 5 stars")
    comment: str | None = Field(None, max_length=2000)


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    consumer_id: UUID
    restaurant_id: UUID
    rating: int
    comment: str | None = None
    created_at: datetime


class RestaurantReviewsResponse(BaseModel):
    items: list[ReviewResponse]
    total: int
    average_rating: float
    limit: int
    offset: int
