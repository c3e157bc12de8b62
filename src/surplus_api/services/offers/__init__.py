"""Offer lifecycle and discovery services."""

from .discovery import OfferDiscovery, OfferHit, OfferSearchFilters, OfferSearchPage
from .inventory import OfferDraft, OfferInventoryManager

__all__ = [
    "OfferDiscovery",
    "OfferDraft",
    "OfferHit",
    "OfferInventoryManager",
    "OfferSearchFilters",
    "OfferSearchPage",
]
