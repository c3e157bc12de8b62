"""Unblock sweep for consumers whose no-show block has elapsed."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from loguru import logger

from surplus_api.domain.marketplace.clock import resolve_now
from surplus_api.services.penalties import PenaltyService

from ._session import SessionFactory, open_session


async def unblock_consumers(*, session_factory: SessionFactory, now: datetime | None = None) -> Dict[str, Any]:
    current = resolve_now(now)
    session = await open_session(session_factory)
    async with session as managed_session:
        released = await PenaltyService(managed_session).unblock_expired(now=current)
        await managed_session.commit()

    summary = {"unblocked": released}
    logger.bind(summary=summary).info("Consumer unblock sweep completed")
    return summary


__all__ = ["unblock_consumers"]
