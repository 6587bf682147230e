from __future__ import annotations

import base64
import binascii
from dataclasses import replace
from datetime import timedelta

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from packages.shared.schemas.events import EventTypeV1, EventV1
from packages.shared.schemas.order_v1 import CatalogItemV1
from services.api.app.db.deps import get_db
from services.api.app.db.models import CartSession, EventLog
from services.api.app.engine.cart import CartStore
from services.api.app.engine.catalog import (
    bouquet_line,
    line_from_catalog,
    stock_book_from_catalog,
)
from services.api.app.engine.errors import BouquetQuantityPinnedError, SaveInProgressError
from services.api.app.engine.line_item import LineItem
from services.api.app.engine.order_form import OrderFields
from services.api.app.engine.reconciliation import EditSession
from services.api.app.engine.stock_guard import StockGuard, StockPolicy, get_stock_policy
from services.api.app.engine.submission import submit_new_order
from services.api.app.models.cart import (
    AddItemRequest,
    AdjustQuantityAction,
    CartActionIn,
    CartActionsRequest,
    CartCreateRequest,
    CartOut,
    OrderDetailsPatch,
    RemoveItemAction,
    SaveResponse,
    SetDeliveryPriceAction,
    SetDiscountAction,
    SetMarkupAction,
    SetPriceAction,
    SetQuantityAction,
    SubmitRequest,
    SubmitResponse,
)
from services.api.app.routers.errors import raise_http_error
from services.api.app.services.cart_sessions import (
    KIND_CREATE,
    KIND_EDIT,
    STATUS_CLOSED,
    STATUS_OPEN,
    cart_out,
    claim_save,
    dump_edit_session,
    dump_store,
    get_save_lock_timeout,
    load_edit_session,
    load_fields,
    load_store,
    log_event,
    new_session,
    release_save,
)
from services.api.app.services.order_service_base import (
    Attachment,
    OrderService,
    OrderServiceError,
)
from services.api.app.services.order_service_factory import get_order_service

router = APIRouter()
logger = structlog.get_logger()


@router.post("/v1/carts", response_model=CartOut)
def create_cart(payload: CartCreateRequest, db: Session = Depends(get_db)) -> CartOut:
    service = _order_service()
    policy = _stock_policy()

    try:
        items = service.list_available_items(payload.location_id)
    except Exception as e:
        raise_http_error(e)

    store = CartStore(StockGuard(stock_book_from_catalog(payload.location_id, items), policy))
    row = new_session(
        db,
        kind=KIND_CREATE,
        location_id=payload.location_id,
        store=store,
        fields=OrderFields(),
    )
    log_event(
        db,
        session_id=row.id,
        event_type=EventTypeV1.CART_CREATED,
        event_payload={"location_id": payload.location_id},
    )
    db.commit()
    logger.info("cart_created", cart_id=row.id, location_id=payload.location_id)
    return cart_out(row, store)


@router.get("/v1/carts/{cart_id}", response_model=CartOut)
def get_cart(cart_id: str, db: Session = Depends(get_db)) -> CartOut:
    row = db.get(CartSession, cart_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Cart not found")
    return cart_out(row, load_store(row, _stock_policy()))


@router.post("/v1/carts/{cart_id}/items", response_model=CartOut)
def add_item(cart_id: str, payload: AddItemRequest, db: Session = Depends(get_db)) -> CartOut:
    row = _open_session(db, cart_id)
    store, session = _load(row)

    # Zero quantity is a no-op, and so is re-adding a bouquet already in the cart.
    if payload.quantity == 0 or (payload.kind == "bouquet" and payload.item_id in store.cart):
        return cart_out(row, store)

    service = _order_service()
    try:
        line = _catalog_line(service, store, row.location_id, payload)
        store.add_or_update(line)
    except HTTPException:
        raise
    except Exception as e:
        raise_http_error(e)

    _dump(row, store, session)
    log_event(
        db,
        session_id=row.id,
        order_id=row.order_id,
        event_type=EventTypeV1.CART_LINE_ADDED,
        event_payload={
            "item_id": payload.item_id,
            "kind": payload.kind,
            "quantity": payload.quantity,
        },
    )
    db.commit()
    logger.info("cart_line_added", cart_id=row.id, item_id=payload.item_id)
    return cart_out(row, store)


@router.delete("/v1/carts/{cart_id}/items/{item_id}", response_model=CartOut)
def remove_item(cart_id: str, item_id: str, db: Session = Depends(get_db)) -> CartOut:
    row = _open_session(db, cart_id)
    store, session = _load(row)

    try:
        store.remove(item_id)
    except Exception as e:
        raise_http_error(e)

    _dump(row, store, session)
    log_event(
        db,
        session_id=row.id,
        order_id=row.order_id,
        event_type=EventTypeV1.CART_LINE_REMOVED,
        event_payload={"item_id": item_id},
    )
    db.commit()
    return cart_out(row, store)


@router.post("/v1/carts/{cart_id}/actions", response_model=CartOut)
def apply_actions(
    cart_id: str, payload: CartActionsRequest, db: Session = Depends(get_db)
) -> CartOut:
    """Apply actions in order. If any action fails, none of them are kept."""

    row = _open_session(db, cart_id)
    store, session = _load(row)

    try:
        for action in payload.actions:
            _apply_action(store, action)
    except Exception as e:
        raise_http_error(e)

    _dump(row, store, session)
    log_event(
        db,
        session_id=row.id,
        order_id=row.order_id,
        event_type=EventTypeV1.CART_ACTIONS_APPLIED,
        event_payload={"actions": [a.model_dump() for a in payload.actions]},
    )
    db.commit()
    return cart_out(row, store)


@router.patch("/v1/carts/{cart_id}/details", response_model=CartOut)
def update_details(
    cart_id: str, payload: OrderDetailsPatch, db: Session = Depends(get_db)
) -> CartOut:
    row = _open_session(db, cart_id)
    merged = {**load_fields(row).to_dict(), **payload.model_dump(exclude_unset=True)}
    fields = OrderFields.from_dict(merged)
    row.fields_json = fields.to_dict()
    db.commit()
    return cart_out(row, load_store(row, _stock_policy()), fields)


@router.post("/v1/carts/{cart_id}/stock/refresh", response_model=CartOut)
def refresh_stock(cart_id: str, db: Session = Depends(get_db)) -> CartOut:
    row = _open_session(db, cart_id)
    store, session = _load(row)
    service = _order_service()

    try:
        items = service.list_available_items(row.location_id)
    except Exception as e:
        raise_http_error(e)

    store.guard.book.replace(stock_book_from_catalog(row.location_id, items).as_dict())
    _dump(row, store, session)
    db.commit()
    return cart_out(row, store)


@router.post("/v1/carts/{cart_id}/submit", response_model=SubmitResponse)
def submit_cart(
    cart_id: str, payload: SubmitRequest, db: Session = Depends(get_db)
) -> SubmitResponse:
    row = _open_session(db, cart_id, kind=KIND_CREATE)
    store = load_store(row, _stock_policy())
    service = _order_service()

    try:
        attachments = [
            Attachment(
                filename=a.filename,
                content=base64.b64decode(a.content_base64, validate=True),
                content_type=a.content_type,
            )
            for a in payload.attachments
        ]
    except (binascii.Error, ValueError) as e:
        raise HTTPException(status_code=422, detail="Attachment content must be base64") from e

    try:
        result = submit_new_order(
            service,
            store,
            load_fields(row),
            order_status=payload.order_status,
            location_id=row.location_id,
            attachments=attachments,
        )
    except Exception as e:
        raise_http_error(e)

    row.status = STATUS_CLOSED
    row.order_id = result.order_id
    row.order_status = result.order_status.value
    log_event(
        db,
        session_id=row.id,
        order_id=result.order_id,
        event_type=EventTypeV1.ORDER_SUBMITTED,
        event_payload={
            "order_status": result.order_status.value,
            "items": len(store.lines),
            "totals": store.totals.rounded(),
            "warnings": result.warnings,
        },
    )
    db.commit()
    return SubmitResponse(
        order_id=result.order_id,
        order_status=result.order_status.value,
        warnings=result.warnings,
    )


@router.post("/v1/carts/{cart_id}/save", response_model=SaveResponse)
def save_edits(cart_id: str, db: Session = Depends(get_db)) -> SaveResponse:
    row = _open_session(db, cart_id, kind=KIND_EDIT)
    service = _order_service()
    policy = _stock_policy()
    timeout = _save_lock_timeout()

    held = row.saving
    if not claim_save(db, row.id, timeout=timeout):
        db.refresh(row)
        if row.status != STATUS_OPEN:
            raise HTTPException(status_code=409, detail="Cart is closed")
        raise_http_error(SaveInProgressError())
    db.refresh(row)
    if held:
        logger.warning("abandoned_save_reclaimed", cart_id=row.id, order_id=row.order_id)

    session: EditSession | None = None
    try:
        session = load_edit_session(row, policy)
        order = session.save(service)
    except Exception as e:
        # Keep whatever was applied so a retry resumes from here.
        if session is not None:
            dump_edit_session(row, session)
        release_save(row)
        log_event(
            db,
            session_id=row.id,
            order_id=row.order_id,
            event_type=EventTypeV1.ORDER_SAVE_FAILED,
            event_payload={
                "error": str(e),
                "failed_step": getattr(e, "failed_step", None),
                "applied": getattr(e, "applied", []),
            },
        )
        db.commit()
        raise_http_error(e)

    dump_edit_session(row, session)
    release_save(row)
    row.status = STATUS_CLOSED
    row.order_status = order.order_status
    log_event(
        db,
        session_id=row.id,
        order_id=order.id,
        event_type=EventTypeV1.ORDER_SAVED,
        event_payload={"total_price": order.total_price, "items": len(order.items)},
    )
    db.commit()
    return SaveResponse(
        order_id=order.id,
        order_status=order.order_status,
        total_price=order.total_price,
        cart=cart_out(row, session.store, session.fields),
    )


@router.get("/v1/carts/{cart_id}/events", response_model=list[EventV1])
def list_events(cart_id: str, db: Session = Depends(get_db)) -> list[EventV1]:
    row = db.get(CartSession, cart_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Cart not found")

    match = EventLog.session_id == row.id
    if row.order_id:
        match = or_(match, EventLog.order_id == row.order_id)

    events = db.query(EventLog).filter(match).order_by(EventLog.created_at.asc()).limit(500).all()
    return [
        EventV1(
            id=e.id,
            session_id=e.session_id,
            order_id=e.order_id,
            event_type=e.event_type,
            payload=e.event_payload_json,
            created_at=e.created_at.isoformat(),
        )
        for e in events
    ]


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


def _save_lock_timeout() -> timedelta:
    try:
        return get_save_lock_timeout()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


def _open_session(db: Session, cart_id: str, kind: str | None = None) -> CartSession:
    row = db.get(CartSession, cart_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Cart not found")
    if row.status != STATUS_OPEN:
        raise HTTPException(status_code=409, detail="Cart is closed")
    if kind is not None and row.kind != kind:
        if kind == KIND_EDIT:
            raise HTTPException(status_code=409, detail="Only edit sessions can be saved")
        raise HTTPException(status_code=409, detail="Edit sessions are saved, not submitted")
    return row


def _load(row: CartSession) -> tuple[CartStore, EditSession | None]:
    policy = _stock_policy()
    if row.kind == KIND_EDIT:
        session = load_edit_session(row, policy)
        return session.store, session
    return load_store(row, policy), None


def _dump(row: CartSession, store: CartStore, session: EditSession | None) -> None:
    if session is not None:
        dump_edit_session(row, session)
    else:
        dump_store(row, store)


def _catalog_line(
    service: OrderService, store: CartStore, location_id: str, payload: AddItemRequest
) -> LineItem:
    if payload.kind == "bouquet":
        if payload.quantity != 1:
            raise BouquetQuantityPinnedError(payload.item_id)
        bouquet = _find(service.list_available_bouquets(location_id), payload.item_id)
        if bouquet is None:
            raise HTTPException(status_code=404, detail="Bouquet not available at this location")
        try:
            details = service.get_bouquet_details(bouquet.id)
        except OrderServiceError as e:
            logger.warning("bouquet_details_unavailable", item_id=bouquet.id, reason=str(e))
            details = None
        return bouquet_line(bouquet, details)

    items = service.list_available_items(location_id)
    store.guard.book.update(stock_book_from_catalog(location_id, items).as_dict())
    item = _find(items, payload.item_id)
    if item is not None:
        return line_from_catalog(item, payload.quantity)

    existing = store.cart.get(payload.item_id)
    if existing is not None:
        return replace(existing, quantity=payload.quantity)
    raise HTTPException(status_code=404, detail="Item not available at this location")


def _find(items: list[CatalogItemV1], item_id: str) -> CatalogItemV1 | None:
    for item in items:
        if item.id == item_id:
            return item
    return None


def _apply_action(store: CartStore, action: CartActionIn) -> None:
    if isinstance(action, SetQuantityAction):
        store.set_quantity(action.item_id, action.quantity)
    elif isinstance(action, AdjustQuantityAction):
        store.adjust_quantity(action.item_id, action.delta)
    elif isinstance(action, SetMarkupAction):
        store.set_markup(action.item_id, action.markup_percentage)
    elif isinstance(action, SetPriceAction):
        store.set_price(action.item_id, action.actual_price)
    elif isinstance(action, RemoveItemAction):
        store.remove(action.item_id)
    elif isinstance(action, SetDiscountAction):
        store.set_discount(action.discount_percentage)
    elif isinstance(action, SetDeliveryPriceAction):
        store.set_delivery_price(action.delivery_price)
