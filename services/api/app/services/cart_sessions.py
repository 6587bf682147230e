"""Persisting cart sessions between requests.

A CartSession row stores a CartStore (and, for edit sessions, the snapshot and the
last persisted item state) as JSON. Routers load the row into engine objects, apply
one request's worth of changes, and dump it back before committing.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from packages.shared.schemas.events import EventTypeV1
from services.api.app.db.models import CartSession, EventLog
from services.api.app.engine.cart import Cart, CartStore
from services.api.app.engine.lifecycle import OrderStatus
from services.api.app.engine.line_item import LineItem
from services.api.app.engine.money import to_money
from services.api.app.engine.order_form import OrderFields
from services.api.app.engine.reconciliation import EditSession, PreviousItemsSnapshot
from services.api.app.engine.stock_guard import StockBook, StockGuard, StockPolicy
from services.api.app.models.cart import (
    BouquetComponentOut,
    CartOut,
    LineOut,
    OrderDetailsOut,
    TotalsOut,
)

KIND_CREATE = "CREATE"
KIND_EDIT = "EDIT"
STATUS_OPEN = "OPEN"
STATUS_CLOSED = "CLOSED"

DEFAULT_SAVE_LOCK_TIMEOUT_SECONDS = 300


def new_session(
    db: Session,
    *,
    kind: str,
    location_id: str,
    store: CartStore,
    fields: OrderFields,
    order_id: str | None = None,
    order_status: OrderStatus = OrderStatus.DRAFT,
    snapshot: PreviousItemsSnapshot | None = None,
    persisted_state: dict[str, tuple[int, float]] | None = None,
) -> CartSession:
    row = CartSession(
        id=uuid4().hex,
        kind=kind,
        status=STATUS_OPEN,
        location_id=location_id,
        order_id=order_id,
        order_status=order_status.value,
        cart_json={},
        fields_json={},
        stock_json={},
        snapshot_json=(snapshot or PreviousItemsSnapshot()).to_list(),
        persisted_json={},
        saving=False,
    )
    dump_store(row, store)
    row.fields_json = fields.to_dict()
    if persisted_state is not None:
        row.persisted_json = _dump_persisted(persisted_state)
    db.add(row)
    return row


def load_store(row: CartSession, policy: StockPolicy) -> CartStore:
    cart = row.cart_json or {}
    stock = row.stock_json or {}
    book = StockBook(stock.get("location_id") or row.location_id, stock.get("balances") or {})
    return CartStore(
        guard=StockGuard(book, policy),
        cart=Cart(tuple(LineItem.from_dict(line) for line in cart.get("lines") or [])),
        discount_percentage=float(cart.get("discount_percentage") or 0),
        delivery_price=float(cart.get("delivery_price") or 0),
        removed_persisted_ids=list(cart.get("removed_persisted_ids") or []),
    )


def dump_store(row: CartSession, store: CartStore) -> None:
    # Reassign whole dicts so SQLAlchemy notices the change on JSON columns.
    row.cart_json = {
        "lines": [line.to_dict() for line in store.lines],
        "discount_percentage": store.discount_percentage,
        "delivery_price": store.delivery_price,
        "removed_persisted_ids": list(store.removed_persisted_ids),
    }
    row.stock_json = {
        "location_id": store.guard.book.location_id,
        "balances": store.guard.book.as_dict(),
    }
    row.updated_at = datetime.utcnow()


def load_fields(row: CartSession) -> OrderFields:
    return OrderFields.from_dict(row.fields_json or {})


def load_edit_session(row: CartSession, policy: StockPolicy) -> EditSession:
    return EditSession(
        order_id=row.order_id or "",
        store=load_store(row, policy),
        snapshot=PreviousItemsSnapshot.from_list(row.snapshot_json or []),
        fields=load_fields(row),
        status=OrderStatus.parse(row.order_status),
        persisted_state=_load_persisted(row.persisted_json or {}),
    )


def dump_edit_session(row: CartSession, session: EditSession) -> None:
    dump_store(row, session.store)
    row.fields_json = session.fields.to_dict()
    row.order_status = session.status.value
    row.persisted_json = _dump_persisted(session.persisted_state)


def get_save_lock_timeout() -> timedelta:
    raw = os.getenv("FLORIST_SAVE_LOCK_TIMEOUT", str(DEFAULT_SAVE_LOCK_TIMEOUT_SECONDS)).strip()
    try:
        seconds = float(raw)
    except ValueError:
        raise ValueError(
            f"Unknown FLORIST_SAVE_LOCK_TIMEOUT={raw!r}. Expected a number of seconds."
        ) from None
    return timedelta(seconds=seconds)


def claim_save(
    db: Session, cart_id: str, *, timeout: timedelta, now: datetime | None = None
) -> bool:
    """Mark an open session as saving. Returns False when another save holds it.

    The check and the write are one UPDATE, so two concurrent requests cannot both
    win. Commits the claim so other connections see it immediately.
    """

    now = now or datetime.utcnow()
    result = db.execute(
        update(CartSession)
        .where(
            CartSession.id == cart_id,
            CartSession.status == STATUS_OPEN,
            or_(
                CartSession.saving.is_(False),
                CartSession.saving_started_at < now - timeout,
            ),
        )
        .values(saving=True, saving_started_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def release_save(row: CartSession) -> None:
    row.saving = False
    row.saving_started_at = None


def _dump_persisted(state: dict[str, tuple[int, float]]) -> dict[str, list]:
    return {pid: [qty, price] for pid, (qty, price) in state.items()}


def _load_persisted(raw: dict[str, list]) -> dict[str, tuple[int, float]]:
    # JSON has no tuples; the save plan compares (quantity, price) tuples.
    return {pid: (int(value[0]), float(value[1])) for pid, value in raw.items()}


def log_event(
    db: Session,
    *,
    event_type: EventTypeV1,
    event_payload: dict,
    session_id: str | None = None,
    order_id: str | None = None,
) -> None:
    db.add(
        EventLog(
            id=uuid4().hex,
            session_id=session_id,
            order_id=order_id,
            event_type=event_type.value,
            event_payload_json=event_payload,
        )
    )


def cart_out(row: CartSession, store: CartStore, fields: OrderFields | None = None) -> CartOut:
    fields = fields or load_fields(row)
    totals = store.totals.rounded()
    return CartOut(
        cart_id=row.id,
        kind=row.kind,
        status=row.status,
        location_id=row.location_id,
        order_id=row.order_id,
        order_status=row.order_status,
        lines=[
            LineOut(
                item_id=line.item_id,
                item_type=line.item_type.value,
                name=line.name,
                quantity=line.quantity,
                standard_price=to_money(line.standard_price),
                actual_price=to_money(line.actual_price),
                markup_percentage=line.markup_percentage,
                line_total=to_money(line.line_total),
                color=line.color,
                picture_ref=line.picture_ref,
                bouquet_composition=[
                    BouquetComponentOut(name=c.name, color=c.color, quantity=c.quantity)
                    for c in line.bouquet_composition
                ],
                persisted_id=line.persisted_id,
            )
            for line in store.lines
        ],
        totals=TotalsOut(**totals),
        approximate_subtotal=to_money(store.approximate_subtotal),
        details=OrderDetailsOut(**fields.to_dict()),
        stock=store.guard.book.as_dict(),
    )
