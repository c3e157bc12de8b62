"""Order listings and restaurant sales summaries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.domain.marketplace.errors import ForbiddenError, OrderNotFoundError
from surplus_api.domain.marketplace.pricing import to_money
from surplus_api.models.order import Order, OrderStatusEnum


@dataclass(slots=True)
class OrderPage:
    items: Sequence[Order]
    total: int
    limit: int
    offset: int


@dataclass(slots=True)
class SalesSummary:
    restaurant_id: UUID
    start: datetime | None
    end: datetime | None
    orders: int
    units: int
    gross_amount: Decimal
    platform_fees: Decimal
    net_amount: Decimal


class OrderQueries:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_for_consumer(self, consumer_id: UUID, order_id: UUID) -> Order:
        order = await self._session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        if order.consumer_id != consumer_id:
            raise ForbiddenError("Order belongs to another consumer", order_id=str(order_id))
        return order

    async def list_for_consumer(
        self,
        consumer_id: UUID,
        *,
        status: OrderStatusEnum | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> OrderPage:
        return await self._page(Order.consumer_id == consumer_id, status=status, limit=limit, offset=offset)

    async def list_for_restaurant(
        self,
        restaurant_id: UUID,
        *,
        status: OrderStatusEnum | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> OrderPage:
        return await self._page(Order.restaurant_id == restaurant_id, status=status, limit=limit, offset=offset)

    async def _page(self, owner_clause, *, status: OrderStatusEnum | None, limit: int, offset: int) -> OrderPage:
        filters = [owner_clause]
        if status is not None:
            filters.append(Order.status == status)
        items = (
            await self._session.execute(
                select(Order).where(*filters).order_by(Order.created_at.desc()).limit(limit).offset(offset)
            )
        ).scalars().all()
        total = await self._session.scalar(select(func.count()).select_from(Order).where(*filters))
        return OrderPage(items=items, total=int(total or 0), limit=limit, offset=offset)

    async def sales_summary(
        self,
        restaurant_id: UUID,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> SalesSummary:
        """Totals over COMPLETED orders picked up within ``[start, end)``."""

        filters = [Order.restaurant_id == restaurant_id, Order.status == OrderStatusEnum.COMPLETED]
        if start is not None:
            filters.append(Order.pickup_time >= start)
        if end is not None:
            filters.append(Order.pickup_time < end)
        row = (
            await self._session.execute(
                select(
                    func.count(Order.id),
                    func.coalesce(func.sum(Order.quantity), 0),
                    func.coalesce(func.sum(Order.total_amount), 0),
                    func.coalesce(func.sum(Order.platform_fee), 0),
                    func.coalesce(func.sum(Order.restaurant_amount), 0),
                ).where(*filters)
            )
        ).one()
        orders, units, gross, fees, net = row
        return SalesSummary(
            restaurant_id=restaurant_id,
            start=start,
            end=end,
            orders=int(orders or 0),
            units=int(units or 0),
            gross_amount=to_money(gross or 0),
            platform_fees=to_money(fees or 0),
            net_amount=to_money(net or 0),
        )


__all__ = ["OrderPage", "OrderQueries", "SalesSummary"]
