"""Read-only offer search ranked by great-circle distance."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.domain.marketplace.clock import resolve_now
from surplus_api.domain.marketplace.errors import OfferNotFoundError
from surplus_api.domain.marketplace.geo import bounding_box, haversine_km
from surplus_api.domain.marketplace.rules import DEFAULT_SEARCH_RADIUS_KM
from surplus_api.models.offer import Offer, OfferStatusEnum
from surplus_api.models.restaurant import Restaurant


@dataclass(slots=True)
class OfferSearchFilters:
    latitude: float | None = None
    longitude: float | None = None
    radius_km: float = DEFAULT_SEARCH_RADIUS_KM
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    is_vegetarian: bool | None = None
    is_vegan: bool | None = None
    restaurant_id: UUID | None = None
    limit: int = 20
    offset: int = 0

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(slots=True)
class OfferHit:
    offer: Offer
    restaurant: Restaurant
    distance_km: float | None = None


@dataclass(slots=True)
class OfferSearchPage:
    items: list[OfferHit] = field(default_factory=list)
    total: int = 0
    limit: int = 20
    offset: int = 0


class OfferDiscovery:
    """Filter active offers and rank them by distance from the consumer."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def search(self, filters: OfferSearchFilters, *, now: datetime | None = None) -> OfferSearchPage:
        current = resolve_now(now)
        conditions = [
            Offer.status == OfferStatusEnum.ACTIVE,
            Offer.available_quantity > 0,
            Offer.pickup_end_time >= current,
            Restaurant.is_active.is_(True),
        ]
        if filters.min_price is not None:
            conditions.append(Offer.promotional_price >= filters.min_price)
        if filters.max_price is not None:
            conditions.append(Offer.promotional_price <= filters.max_price)
        if filters.is_vegetarian:
            conditions.append(Offer.is_vegetarian.is_(True))
        if filters.is_vegan:
            conditions.append(Offer.is_vegan.is_(True))
        if filters.restaurant_id is not None:
            conditions.append(Offer.restaurant_id == filters.restaurant_id)

        base = select(Offer, Restaurant).join(Restaurant, Restaurant.id == Offer.restaurant_id)

        if not filters.has_location:
            total = await self._session.scalar(
                select(func.count())
                .select_from(Offer)
                .join(Restaurant, Restaurant.id == Offer.restaurant_id)
                .where(*conditions)
            )
            rows = await self._session.execute(
                base.where(*conditions)
                .order_by(Offer.pickup_end_time.asc(), Offer.created_at.desc())
                .limit(filters.limit)
                .offset(filters.offset)
            )
            hits = [OfferHit(offer=offer, restaurant=restaurant) for offer, restaurant in rows.all()]
            return OfferSearchPage(items=hits, total=int(total or 0), limit=filters.limit, offset=filters.offset)

        lat, lon = float(filters.latitude), float(filters.longitude)
        min_lat, max_lat, lon_ranges = bounding_box(lat, lon, filters.radius_km)
        conditions.extend(
            [
                Restaurant.latitude.between(min_lat, max_lat),
                or_(*(Restaurant.longitude.between(west, east) for west, east in lon_ranges)),
            ]
        )
        rows = await self._session.execute(base.where(*conditions))

        ranked: list[OfferHit] = []
        for offer, restaurant in rows.all():
            distance = haversine_km(lat, lon, restaurant.latitude, restaurant.longitude)
            if distance <= filters.radius_km:
                ranked.append(OfferHit(offer=offer, restaurant=restaurant, distance_km=round(distance, 3)))
        ranked.sort(key=lambda hit: (hit.distance_km, hit.offer.pickup_end_time))

        page = ranked[filters.offset : filters.offset + filters.limit]
        return OfferSearchPage(items=page, total=len(ranked), limit=filters.limit, offset=filters.offset)

    async def get_offer(self, offer_id: UUID) -> OfferHit:
        row = (
            await self._session.execute(
                select(Offer, Restaurant)
                .join(Restaurant, Restaurant.id == Offer.restaurant_id)
                .where(Offer.id == offer_id)
            )
        ).first()
        if row is None:
            raise OfferNotFoundError("Offer not found", offer_id=str(offer_id))
        offer, restaurant = row
        return OfferHit(offer=offer, restaurant=restaurant)


__all__ = ["OfferDiscovery", "OfferHit", "OfferSearchFilters", "OfferSearchPage"]
