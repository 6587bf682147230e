from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from packages.shared.schemas.events import EventTypeV1
from services.api.app.db.deps import get_db
from services.api.app.db.models import CartSession
from services.api.app.engine.catalog import stock_book_from_catalog
from services.api.app.engine.errors import TransitionRejectedError
from services.api.app.engine.lifecycle import OrderLifecycle
from services.api.app.engine.reconciliation import EditSession
from services.api.app.engine.stock_guard import StockGuard, StockPolicy, get_stock_policy
from services.api.app.models.cart import CartOut, StatusChangeRequest, StatusChangeResponse
from services.api.app.routers.errors import raise_http_error
from services.api.app.services.cart_sessions import (
    KIND_EDIT,
    STATUS_OPEN,
    cart_out,
    log_event,
    new_session,
)
from services.api.app.services.order_service_base import OrderService
from services.api.app.services.order_service_factory import get_order_service

router = APIRouter()


@router.post("/v1/orders/{order_id}/edit", response_model=CartOut)
def begin_edit(order_id: str, db: Session = Depends(get_db)) -> CartOut:
    """Open an edit session on a persisted order and capture its item snapshot."""

    service = _order_service()
    policy = _stock_policy()

    try:
        order = service.get_order(order_id)
        items = service.list_available_items(order.shop_location_id)
        guard = StockGuard(stock_book_from_catalog(order.shop_location_id, items), policy)
        session = EditSession.begin(order, guard)
    except Exception as e:
        raise_http_error(e)

    row = new_session(
        db,
        kind=KIND_EDIT,
        location_id=order.shop_location_id,
        store=session.store,
        fields=session.fields,
        order_id=order.id,
        order_status=session.status,
        snapshot=session.snapshot,
        persisted_state=session.persisted_state,
    )
    log_event(
        db,
        session_id=row.id,
        order_id=order.id,
        event_type=EventTypeV1.EDIT_SESSION_STARTED,
        event_payload={"order_status": session.status.value, "items": session.snapshot.to_list()},
    )
    db.commit()
    return cart_out(row, session.store, session.fields)


@router.post("/v1/orders/{order_id}/status", response_model=StatusChangeResponse)
def change_status(
    order_id: str, payload: StatusChangeRequest, db: Session = Depends(get_db)
) -> StatusChangeResponse:
    service = _order_service()

    try:
        order = service.get_order(order_id)
        lifecycle = OrderLifecycle(order_id, order.order_status)
        result = lifecycle.transition_to(payload.new_status, service)
    except TransitionRejectedError as e:
        log_event(
            db,
            order_id=order_id,
            event_type=EventTypeV1.ORDER_STATUS_REJECTED,
            event_payload={
                "current_status": e.current_status,
                "requested_status": e.requested_status,
                "reason": e.reason,
            },
        )
        db.commit()
        raise_http_error(e)
    except Exception as e:
        raise_http_error(e)

    open_sessions = (
        db.query(CartSession)
        .filter(CartSession.order_id == order_id, CartSession.status == STATUS_OPEN)
        .all()
    )
    for row in open_sessions:
        row.order_status = result.new_status.value

    log_event(
        db,
        order_id=order_id,
        event_type=EventTypeV1.ORDER_STATUS_CHANGED,
        event_payload={
            "previous_status": result.previous_status.value,
            "new_status": result.new_status.value,
            "inventory_effect": result.effect.value,
        },
    )
    db.commit()
    return StatusChangeResponse(
        order_id=order_id,
        previous_status=result.previous_status.value,
        new_status=result.new_status.value,
        inventory_effect=result.effect.value,
    )


def _order_service() -> OrderService:
    try:
        return get_order_service()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


def _stock_policy() -> StockPolicy:
    try:
        return get_stock_policy()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
