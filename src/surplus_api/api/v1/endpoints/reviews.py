from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.api.dependencies.identity import Actor, require_consumer
from surplus_api.db.session import get_session
from surplus_api.schemas.review import ReviewCreateRequest, ReviewResponse
from surplus_api.services.reviews import ReviewService

router = APIRouter(prefix="/reviews", tags=["Reviews"])


@router.post("", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def create_review(
    payload: ReviewCreateRequest,
    actor: Actor = Depends(require_consumer),
    session: AsyncSession = Depends(get_session),
) -> ReviewResponse:
    review = await ReviewService(session).create_review(actor.id, payload.order_id, payload.rating, payload.comment)
    return ReviewResponse.model_validate(review)
