"""Order reviews and restaurant rating aggregates."""

from .service import RestaurantReviewPage, ReviewService

__all__ = ["RestaurantReviewPage", "ReviewService"]
