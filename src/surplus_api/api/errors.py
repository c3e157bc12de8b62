"""Translate marketplace errors into JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from surplus_api.domain.marketplace.errors import MarketplaceError

STATUS_BY_KIND: dict[str, int] = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "conflict": status.HTTP_409_CONFLICT,
    "state": status.HTTP_409_CONFLICT,
    "authorization": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "transient": status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    if status_code >= 500:
        logger.warning("Transient marketplace failure", path=request.url.path, code=exc.code, error=exc.message)
    else:
        logger.info("Marketplace request rejected", path=request.url.path, code=exc.code, kind=exc.kind)
    return JSONResponse(status_code=status_code, content=exc.as_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)


__all__ = ["STATUS_BY_KIND", "marketplace_error_handler", "register_error_handlers"]
