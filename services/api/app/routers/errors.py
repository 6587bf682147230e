from __future__ import annotations

from typing import NoReturn

import structlog
from fastapi import HTTPException

from services.api.app.engine.errors import (
    InvalidMarkupError,
    InvalidTransitionError,
    ItemNotInCartError,
    LineItemError,
    OrderValidationError,
    PartialSaveError,
    SaveInProgressError,
    StockError,
    TransitionRejectedError,
)
from services.api.app.services.order_service_base import (
    OrderNotFoundError,
    OrderServiceError,
    StockConflictError,
)

logger = structlog.get_logger()


def raise_http_error(e: Exception) -> NoReturn:
    if isinstance(e, OrderValidationError):
        raise HTTPException(
            status_code=422, detail={"message": "Order is not valid", "issues": e.issues}
        ) from e

    if isinstance(e, (LineItemError, InvalidMarkupError)):
        raise HTTPException(status_code=422, detail=str(e)) from e

    if isinstance(e, ItemNotInCartError):
        raise HTTPException(status_code=404, detail=str(e)) from e

    if isinstance(e, (StockError, InvalidTransitionError, SaveInProgressError)):
        raise HTTPException(status_code=409, detail=str(e)) from e

    if isinstance(e, TransitionRejectedError):
        raise HTTPException(
            status_code=409,
            detail={
                "message": e.reason,
                "current_status": e.current_status,
                "requested_status": e.requested_status,
            },
        ) from e

    if isinstance(e, PartialSaveError):
        raise HTTPException(
            status_code=502,
            detail={
                "message": str(e),
                "failed_step": e.failed_step,
                "applied": e.applied,
            },
        ) from e

    if isinstance(e, OrderNotFoundError):
        raise HTTPException(status_code=404, detail=str(e)) from e

    if isinstance(e, StockConflictError):
        raise HTTPException(status_code=409, detail=str(e)) from e

    if isinstance(e, OrderServiceError):
        raise HTTPException(status_code=502, detail=str(e)) from e

    logger.error("unhandled_error", error_type=type(e).__name__, error=str(e))
    raise HTTPException(status_code=500, detail="Internal Server Error") from e
