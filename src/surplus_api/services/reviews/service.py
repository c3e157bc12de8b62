"""Consumer reviews of completed orders and the restaurant rating they feed."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.domain.marketplace.clock import resolve_now
from surplus_api.domain.marketplace.errors import (
    DuplicateReviewError,
    InvalidReviewError,
    NotReadyForPickupError,
    OrderNotFoundError,
    RestaurantNotFoundError,
)
from surplus_api.domain.marketplace.rules import LOW_RATING_MIN_REVIEWS, LOW_RATING_THRESHOLD
from surplus_api.models.notification import NotificationTypeEnum, RecipientTypeEnum
from surplus_api.models.order import Order, OrderStatusEnum
from surplus_api.models.restaurant import Restaurant
from surplus_api.models.review import Review
from surplus_api.services.notifications import NotificationService
from surplus_api.services.notifications.templates import render_low_rating_alert


@dataclass(slots=True)
class RestaurantReviewPage:
    items: Sequence[Review]
    total: int
    average_rating: float
    limit: int
    offset: int


class ReviewService:
    def __init__(self, session: AsyncSession, *, notifications: NotificationService | None = None) -> None:
        self._session = session
        self._notifications = notifications or NotificationService(session)

    async def create_review(
        self,
        consumer_id: UUID,
        order_id: UUID,
        rating: int,
        comment: str | None = None,
        *,
        now: datetime | None = None,
    ) -> Review:
        current = resolve_now(now)
        if not 1 <= rating <= 5:
            raise InvalidReviewError("Rating must be between 1 and 5", rating=rating)

        order = await self._session.get(Order, order_id)
        if order is None or order.consumer_id != consumer_id:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        if order.status != OrderStatusEnum.COMPLETED:
            raise NotReadyForPickupError(
                "Only completed orders can be reviewed",
                order_id=str(order_id),
                status=order.status,
            )
        existing = await self._session.scalar(select(Review.id).where(Review.order_id == order_id))
        if existing is not None:
            raise DuplicateReviewError("Order already reviewed", order_id=str(order_id))

        review = Review(
            order_id=order.id,
            consumer_id=consumer_id,
            restaurant_id=order.restaurant_id,
            rating=rating,
            comment=comment,
            created_at=current,
        )
        self._session.add(review)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            await self._session.rollback()
            raise DuplicateReviewError("Order already reviewed", order_id=str(order_id)) from exc

        restaurant = await self._refresh_rating(order.restaurant_id)
        if restaurant.total_ratings >= LOW_RATING_MIN_REVIEWS and restaurant.average_rating < LOW_RATING_THRESHOLD:
            await self._notifications.emit(
                recipient_type=RecipientTypeEnum.RESTAURANT,
                recipient_id=restaurant.id,
                notification_type=NotificationTypeEnum.LOW_RATING_ALERT,
                rendered=render_low_rating_alert(
                    average_rating=restaurant.average_rating,
                    total_ratings=restaurant.total_ratings,
                ),
                related_id=review.id,
                dedup_key=f"low-rating:{review.id}",
                now=current,
            )
        await self._session.commit()
        logger.info("Review created", order_id=str(order_id), restaurant_id=str(order.restaurant_id), rating=rating)
        return review

    async def _refresh_rating(self, restaurant_id: UUID) -> Restaurant:
        average, total = (
            await self._session.execute(
                select(func.avg(Review.rating), func.count(Review.id)).where(Review.restaurant_id == restaurant_id)
            )
        ).one()
        restaurant = await self._session.get(Restaurant, restaurant_id)
        if restaurant is None:
            raise RestaurantNotFoundError("Restaurant not found", restaurant_id=str(restaurant_id))
        restaurant.average_rating = round(float(average or 0.0), 2)
        restaurant.total_ratings = int(total or 0)
        return restaurant

    async def list_for_restaurant(self, restaurant_id: UUID, *, limit: int = 20, offset: int = 0) -> RestaurantReviewPage:
        restaurant = await self._session.get(Restaurant, restaurant_id)
        if restaurant is None:
            raise RestaurantNotFoundError("Restaurant not found", restaurant_id=str(restaurant_id))
        items = (
            await self._session.execute(
                select(Review)
                .where(Review.restaurant_id == restaurant_id)
                .order_by(Review.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
        ).scalars().all()
        return RestaurantReviewPage(
            items=items,
            total=restaurant.total_ratings,
            average_rating=restaurant.average_rating,
            limit=limit,
            offset=offset,
        )


__all__ = ["RestaurantReviewPage", "ReviewService"]
