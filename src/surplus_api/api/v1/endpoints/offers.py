from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.api.dependencies.identity import Actor, require_restaurant
from surplus_api.api.dependencies.payments import get_payment_gateway
from surplus_api.db.session import get_session
from surplus_api.domain.marketplace.rules import DEFAULT_SEARCH_RADIUS_KM
from surplus_api.schemas.offer import (
    OfferCancellationResponse,
    OfferCreateRequest,
    OfferHitResponse,
    OfferResponse,
    OfferSearchResponse,
    RestaurantSummary,
)
from surplus_api.services.offers import (
    OfferDiscovery,
    OfferDraft,
    OfferHit,
    OfferInventoryManager,
    OfferSearchFilters,
)
from surplus_api.services.orders import OrderStateMachine
from surplus_api.services.payments import PaymentGateway

router = APIRouter(prefix="/offers", tags=["Offers"])


def _hit_response(hit: OfferHit) -> OfferHitResponse:
    return OfferHitResponse(
        offer=OfferResponse.model_validate(hit.offer),
        restaurant=RestaurantSummary.model_validate(hit.restaurant),
        distance_km=hit.distance_km,
    )


@router.post("", response_model=OfferResponse, status_code=status.HTTP_201_CREATED)
async def create_offer(
    payload: OfferCreateRequest,
    actor: Actor = Depends(require_restaurant),
    session: AsyncSession = Depends(get_session),
) -> OfferResponse:
    """Publish a surplus package for the calling restaurant."""

    draft = OfferDraft(**payload.model_dump())
    offer = await OfferInventoryManager(session).create_offer(actor.id, draft)
    return OfferResponse.model_validate(offer)


@router.get("", response_model=OfferSearchResponse)
async def search_offers(
    latitude: float | None = Query(None, ge=-90, le=90),
    longitude: float | None = Query(None, ge=-180, le=180),
    radius_km: float = Query(DEFAULT_SEARCH_RADIUS_KM, gt=0, le=100),
    min_price: Decimal | None = Query(None, ge=0),
    max_price: Decimal | None = Query(None, ge=0),
    is_vegetarian: bool | None = None,
    is_vegan: bool | None = None,
    restaurant_id: UUID | None = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> OfferSearchResponse:
    filters = OfferSearchFilters(
        latitude=latitude,
        longitude=longitude,
        radius_km=radius_km,
        min_price=min_price,
        max_price=max_price,
        is_vegetarian=is_vegetarian,
        is_vegan=is_vegan,
        restaurant_id=restaurant_id,
        limit=limit,
        offset=offset,
    )
    page = await OfferDiscovery(session).search(filters)
    return OfferSearchResponse(
        items=[_hit_response(hit) for hit in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/{offer_id}", response_model=OfferHitResponse)
async def get_offer(offer_id: UUID, session: AsyncSession = Depends(get_session)) -> OfferHitResponse:
    hit = await OfferDiscovery(session).get_offer(offer_id)
    return _hit_response(hit)


@router.post("/{offer_id}/cancel", response_model=OfferCancellationResponse)
async def cancel_offer(
    offer_id: UUID,
    actor: Actor = Depends(require_restaurant),
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> OfferCancellationResponse:
    """Withdraw an offer; paid orders are refunded and consumers credited."""

    result = await OrderStateMachine(session, gateway=gateway).cancel_offer(actor.id, offer_id)
    return OfferCancellationResponse(
        offer=OfferResponse.model_validate(result.offer),
        cancelled_orders=[order.id for order in result.cancelled_orders],
        credited_total=result.credited_total,
    )
