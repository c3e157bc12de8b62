"""Offer expiry sweep."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from loguru import logger

from surplus_api.domain.marketplace.clock import resolve_now
from surplus_api.services.offers import OfferInventoryManager

from ._session import SessionFactory, open_session


async def expire_offers(*, session_factory: SessionFactory, now: datetime | None = None) -> Dict[str, Any]:
    """Mark ACTIVE offers whose pickup window ended as EXPIRED."""

    current = resolve_now(now)
    session = await open_session(session_factory)
    async with session as managed_session:
        expired = await OfferInventoryManager(managed_session).expire_due(now=current)
        await managed_session.commit()

    summary = {"expired": expired}
    logger.bind(summary=summary).info("Offer expiry sweep completed")
    return summary


__all__ = ["expire_offers"]
