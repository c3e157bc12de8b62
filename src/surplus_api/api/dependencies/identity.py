"""Caller identity forwarded by the upstream auth gateway."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status


class ActorRole(str, Enum):
    CONSUMER = "consumer"
    RESTAURANT = "restaurant"


@dataclass(frozen=True, slots=True)
class Actor:
    id: UUID
    role: ActorRole


async def get_actor(
    actor_id: str | None = Header(None, alias="X-Actor-Id"),
    actor_role: str | None = Header(None, alias="X-Actor-Role"),
) -> Actor:
    """Resolve the caller from forwarded identity headers."""

    if not actor_id or not actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing actor context",
        )

    try:
        parsed_id = UUID(actor_id)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid actor identifier",
        ) from error

    try:
        role = ActorRole(actor_role.strip().lower())
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unknown actor role",
        ) from error

    return Actor(id=parsed_id, role=role)


def _require_role(role: ActorRole):
    async def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role != role:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Endpoint restricted to {role.value} actors",
            )
        return actor

    return dependency


require_consumer = _require_role(ActorRole.CONSUMER)
require_restaurant = _require_role(ActorRole.RESTAURANT)
