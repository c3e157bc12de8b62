from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.api.dependencies.identity import Actor, require_restaurant
from surplus_api.db.session import get_session
from surplus_api.domain.marketplace.clock import ensure_utc
from surplus_api.models.order import OrderStatusEnum
from surplus_api.schemas.order import OrderListResponse, OrderResponse, SalesSummaryResponse
from surplus_api.schemas.review import RestaurantReviewsResponse, ReviewResponse
from surplus_api.services.orders import OrderQueries
from surplus_api.services.reviews import ReviewService

router = APIRouter(prefix="/restaurants", tags=["Restaurants"])


@router.get("/me/orders", response_model=OrderListResponse)
async def list_restaurant_orders(
    status_filter: OrderStatusEnum | None = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(require_restaurant),
    session: AsyncSession = Depends(get_session),
) -> OrderListResponse:
    page = await OrderQueries(session).list_for_restaurant(actor.id, status=status_filter, limit=limit, offset=offset)
    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/me/sales-summary", response_model=SalesSummaryResponse)
async def sales_summary(
    start: datetime | None = None,
    end: datetime | None = None,
    actor: Actor = Depends(require_restaurant),
    session: AsyncSession = Depends(get_session),
) -> SalesSummaryResponse:
    """Completed pickups within ``[start, end)``; naive timestamps are read as UTC."""

    summary = await OrderQueries(session).sales_summary(
        actor.id,
        start=ensure_utc(start) if start else None,
        end=ensure_utc(end) if end else None,
    )
    return SalesSummaryResponse.model_validate(summary)


@router.get("/{restaurant_id}/reviews", response_model=RestaurantReviewsResponse)
async def list_reviews(
    restaurant_id: UUID,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> RestaurantReviewsResponse:
    page = await ReviewService(session).list_for_restaurant(restaurant_id, limit=limit, offset=offset)
    return RestaurantReviewsResponse(
        items=[ReviewResponse.model_validate(review) for review in page.items],
        total=page.total,
        average_rating=page.average_rating,
        limit=page.limit,
        offset=page.offset,
    )
