from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.api.dependencies.identity import Actor, require_restaurant
from surplus_api.db.session import get_session
from surplus_api.schemas.order import (
    OrderResponse,
    PickupCodeRequest,
    PickupRedemptionResponse,
    PickupValidationResponse,
)
from surplus_api.services.orders import PickupVerifier

router = APIRouter(prefix="/pickup", tags=["Pickup"])


@router.post("/validate", response_model=PickupValidationResponse)
async def validate_pickup(
    payload: PickupCodeRequest,
    actor: Actor = Depends(require_restaurant),
    session: AsyncSession = Depends(get_session),
) -> PickupValidationResponse:
    """Look up a pickup code without redeeming it."""

    check = await PickupVerifier(session).validate(actor.id, payload.pickup_code)
    return PickupValidationResponse(
        order=OrderResponse.model_validate(check.order),
        package_type=check.offer.package_type,
        consumer_name=check.consumer_name,
        pickup_start_time=check.offer.pickup_start_time,
        pickup_end_time=check.offer.pickup_end_time,
    )


@router.post("/redeem", response_model=PickupRedemptionResponse)
async def redeem_pickup(
    payload: PickupCodeRequest,
    actor: Actor = Depends(require_restaurant),
    session: AsyncSession = Depends(get_session),
) -> PickupRedemptionResponse:
    redemption = await PickupVerifier(session).redeem(actor.id, payload.pickup_code)
    return PickupRedemptionResponse(
        order=OrderResponse.model_validate(redemption.order),
        already_redeemed=redemption.already_redeemed,
    )
