"""Pickup code generation and the scannable QR artifact that encodes it."""

from __future__ import annotations

import base64
import secrets
import string
from io import BytesIO

import qrcode
from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from surplus_api.domain.marketplace.rules import PICKUP_CODE_LENGTH
from surplus_api.models.order import Order

PICKUP_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_pickup_code(length: int = PICKUP_CODE_LENGTH) -> str:
    return "".join(secrets.choice(PICKUP_CODE_ALPHABET) for _ in range(length))


def normalize_pickup_code(code: str) -> str:
    return code.strip().upper()


async def allocate_pickup_code(session: AsyncSession, *, max_attempts: int = 5) -> str:
    """Draw codes until one is unused.

    The unique constraint on ``orders.pickup_code`` remains the final arbiter;
    the reservation flow retries the whole transaction if it trips.
    """

    for _ in range(max_attempts):
        code = generate_pickup_code()
        taken = await session.scalar(select(exists().where(Order.pickup_code == code)))
        if not taken:
            return code
    raise RuntimeError("Could not allocate a unique pickup code")


def render_pickup_qr(code: str) -> str:
    """Return a PNG data URL whose payload is exactly the pickup code."""

    img = qrcode.make(code)
    buffer = BytesIO()
    img.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


__all__ = [
    "PICKUP_CODE_ALPHABET",
    "allocate_pickup_code",
    "generate_pickup_code",
    "normalize_pickup_code",
    "render_pickup_qr",
]
