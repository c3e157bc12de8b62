from fastapi import APIRouter

from .endpoints import (
    health,
    notifications,
    observability,
    offers,
    orders,
    pickup,
    restaurants,
    reviews,
    webhooks,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(offers.router)
router.include_router(orders.router)
router.include_router(restaurants.router)
router.include_router(pickup.router)
router.include_router(reviews.router)
router.include_router(notifications.router)
router.include_router(webhooks.router)
router.include_router(observability.router)
