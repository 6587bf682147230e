"""Saving edits to an existing order.

When an order is opened for editing, its items are captured once in a
PreviousItemsSnapshot. The snapshot never changes during the session. On save the
session deletes removed lines, creates new lines, updates changed lines, and finally
sends one order-level update that carries the snapshot. The backend diffs the snapshot
against the now-persisted items to work out the net inventory adjustment, however many
intermediate edits happened.

A save is a sequence of independent calls with no client-side rollback. Every
successful call is recorded on the session (created lines get their persisted id,
deleted ids leave the queue), so retrying after a failure resumes instead of repeating.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Any

import structlog

from packages.shared.schemas.order_v1 import (
    OrderItemUpdateV1,
    OrderItemV1,
    OrderUpdateV1,
    OrderV1,
    PreviousItemV1,
)
from services.api.app.engine.cart import Cart, CartStore
from services.api.app.engine.catalog import line_from_persisted
from services.api.app.engine.errors import PartialSaveError, SaveInProgressError
from services.api.app.engine.lifecycle import OrderStatus
from services.api.app.engine.line_item import ItemType, LineItem
from services.api.app.engine.money import to_money
from services.api.app.engine.order_form import (
    DeliveryType,
    OrderFields,
    PaymentMethod,
    PaymentStatus,
    validate_order,
)
from services.api.app.engine.stock_guard import StockGuard
from services.api.app.services.order_service_base import OrderService, OrderServiceError

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class SnapshotItem:
    item_id: str
    item_name: str
    item_type: ItemType
    quantity: int
    unit_price: float
    subtotal: float
    persisted_id: str | None = None

    def to_wire(self) -> PreviousItemV1:
        return PreviousItemV1(
            item_id=self.item_id,
            item_name=self.item_name,
            item_type=self.item_type.value,
            quantity=self.quantity,
            unit_price=self.unit_price,
            subtotal=self.subtotal,
        )


@dataclass(frozen=True, slots=True)
class PreviousItemsSnapshot:
    items: tuple[SnapshotItem, ...] = ()

    @classmethod
    def capture(cls, lines: Iterable[LineItem]) -> PreviousItemsSnapshot:
        return cls(
            tuple(
                SnapshotItem(
                    item_id=line.item_id,
                    item_name=line.name,
                    item_type=line.item_type,
                    quantity=line.quantity,
                    unit_price=line.actual_price,
                    subtotal=line.line_total,
                    persisted_id=line.persisted_id,
                )
                for line in lines
            )
        )

    def quantities(self) -> dict[str, int]:
        out: dict[str, int] = {}
        for item in self.items:
            out[item.item_id] = out.get(item.item_id, 0) + item.quantity
        return out

    def to_wire(self) -> list[PreviousItemV1]:
        return [item.to_wire() for item in self.items]

    def to_list(self) -> list[dict[str, Any]]:
        return [
            {
                "item_id": i.item_id,
                "item_name": i.item_name,
                "item_type": i.item_type.value,
                "quantity": i.quantity,
                "unit_price": i.unit_price,
                "subtotal": i.subtotal,
                "persisted_id": i.persisted_id,
            }
            for i in self.items
        ]

    @classmethod
    def from_list(cls, rows: list[dict[str, Any]]) -> PreviousItemsSnapshot:
        return cls(
            tuple(
                SnapshotItem(
                    item_id=str(r["item_id"]),
                    item_name=str(r.get("item_name") or ""),
                    item_type=ItemType.parse(r["item_type"]),
                    quantity=int(r["quantity"]),
                    unit_price=float(r["unit_price"]),
                    subtotal=float(r["subtotal"]),
                    persisted_id=r.get("persisted_id"),
                )
                for r in rows
            )
        )


@dataclass(frozen=True, slots=True)
class SavePlan:
    deletions: tuple[str, ...]
    creations: tuple[LineItem, ...]
    updates: tuple[tuple[str, LineItem], ...]  # (order item id, line)
    order_update: OrderUpdateV1

    @property
    def item_calls(self) -> int:
        return len(self.deletions) + (1 if self.creations else 0) + len(self.updates)


def merge_duplicate_lines(
    lines: Iterable[LineItem],
) -> tuple[tuple[LineItem, ...], list[str]]:
    """Fold order items that share an item id into the first of them.

    Older clients appended a new order item on every add, so one order can hold
    several rows for the same flower. The cart keeps one line per item: quantities
    are summed and, when unit prices differ, the line gets the price that keeps its
    total unchanged. A second row for the same bouquet instance is dropped. Returns
    the merged lines and the persisted ids of the folded rows, which the next save
    deletes.
    """

    merged: dict[str, LineItem] = {}
    folded: list[str] = []
    for line in lines:
        kept = merged.get(line.item_id)
        if kept is None:
            merged[line.item_id] = line
            continue

        if line.persisted_id:
            folded.append(line.persisted_id)
        if not kept.item_type.stackable:
            continue

        quantity = kept.quantity + line.quantity
        if kept.actual_price == line.actual_price:
            merged[line.item_id] = replace(kept, quantity=quantity)
        else:
            merged[line.item_id] = replace(
                kept,
                quantity=quantity,
                actual_price=(kept.line_total + line.line_total) / quantity,
                markup_percentage=None,
            )
    return tuple(merged.values()), folded


class EditSession:
    def __init__(
        self,
        *,
        order_id: str,
        store: CartStore,
        snapshot: PreviousItemsSnapshot,
        fields: OrderFields,
        status: OrderStatus,
        persisted_state: dict[str, tuple[int, float]] | None = None,
    ) -> None:
        self.order_id = order_id
        self.store = store
        self.snapshot = snapshot
        self.fields = fields
        self.status = status
        self.saving = False
        if persisted_state is None:
            persisted_state = {
                line.persisted_id: (line.quantity, line.actual_price)
                for line in store.lines
                if line.persisted_id
            }
        self._persisted = dict(persisted_state)
        store.guard.reserved = self.reserved_quantities()

    @classmethod
    def begin(cls, order: OrderV1, guard: StockGuard) -> EditSession:
        persisted = tuple(line_from_persisted(item) for item in order.items)
        lines, folded_ids = merge_duplicate_lines(persisted)
        if folded_ids:
            logger.warning(
                "duplicate_order_items_merged",
                order_id=order.id,
                folded_order_item_ids=folded_ids,
            )

        store = CartStore(
            guard=guard,
            cart=Cart(lines),
            discount_percentage=order.discount_percentage,
            delivery_price=order.delivery_price,
            removed_persisted_ids=list(folded_ids),
        )
        method = order.payment_method
        fields = OrderFields(
            client_id=order.client_id,
            delivery_type=DeliveryType(order.delivery_type or DeliveryType.PICKUP.value),
            delivery_address=order.delivery_address or "",
            delivery_date_time=order.delivery_date_time,
            notes=order.notes or "",
            payment_status=PaymentStatus(order.payment_status or PaymentStatus.PENDING.value),
            payment_method=PaymentMethod(method) if method else None,
        )
        session = cls(
            order_id=order.id,
            store=store,
            snapshot=PreviousItemsSnapshot.capture(persisted),
            fields=fields,
            status=OrderStatus.parse(order.order_status),
            persisted_state={
                line.persisted_id: (line.quantity, line.actual_price)
                for line in persisted
                if line.persisted_id
            },
        )
        logger.info("edit_session_started", order_id=order.id, items=len(lines))
        return session

    @property
    def persisted_state(self) -> dict[str, tuple[int, float]]:
        return dict(self._persisted)

    def reserved_quantities(self) -> dict[str, int]:
        """Units this order already holds. Only a confirmed order has deducted stock."""
        if self.status is OrderStatus.CONFIRMED:
            return self.snapshot.quantities()
        return {}

    def validate(self) -> None:
        validate_order(self.fields, self.store, self.store.guard)

    def plan(self) -> SavePlan:
        lines = self.store.lines
        creations = tuple(line for line in lines if line.is_new)
        updates = tuple(
            (line.persisted_id, line)
            for line in lines
            if line.persisted_id
            and self._persisted.get(line.persisted_id) != (line.quantity, line.actual_price)
        )

        totals = self.store.totals
        order_update = OrderUpdateV1(
            **self.fields.to_wire().model_dump(),
            discount_percentage=totals.discount_percentage,
            discount_amount=to_money(totals.discount_amount),
            delivery_price=to_money(totals.delivery_price),
            subtotal=to_money(totals.subtotal),
            total_price=to_money(totals.total),
            previous_items=self.snapshot.to_wire(),
        )
        return SavePlan(
            deletions=tuple(self.store.removed_persisted_ids),
            creations=creations,
            updates=updates,
            order_update=order_update,
        )

    def save(self, service: OrderService) -> OrderV1:
        if self.saving:
            raise SaveInProgressError()

        self.validate()
        self.saving = True
        applied: list[str] = []
        try:
            plan = self.plan()
            logger.info(
                "edit_session_saving",
                order_id=self.order_id,
                deletions=len(plan.deletions),
                creations=len(plan.creations),
                updates=len(plan.updates),
            )

            for order_item_id in plan.deletions:
                step = f"delete item {order_item_id}"
                self._call(step, applied, service.delete_order_item, self.order_id, order_item_id)
                self.store.removed_persisted_ids.remove(order_item_id)
                self._persisted.pop(order_item_id, None)

            if plan.creations:
                payload = [
                    OrderItemV1(
                        item_id=line.item_id,
                        item_type=line.item_type.value,
                        quantity=line.quantity,
                        unit_price=line.actual_price,
                    )
                    for line in plan.creations
                ]
                step = f"create {len(payload)} item(s)"
                created = self._call(step, applied, service.add_order_items, self.order_id, payload)
                by_item = {c.item_id: c for c in created}
                missing: list[str] = []
                for line in plan.creations:
                    persisted = by_item.get(line.item_id)
                    if persisted is None:
                        missing.append(line.item_id)
                        continue
                    self.store.mark_persisted(line.item_id, persisted.id)
                    self._persisted[persisted.id] = (line.quantity, line.actual_price)
                if missing:
                    # Without a persisted id a retry would create these lines again.
                    reason = f"create response did not include {', '.join(missing)}"
                    logger.warning(
                        "edit_session_save_failed",
                        order_id=self.order_id,
                        step=step,
                        applied=applied,
                        reason=reason,
                    )
                    raise PartialSaveError(step, reason, list(applied))

            for order_item_id, line in plan.updates:
                step = f"update item {order_item_id}"
                update = OrderItemUpdateV1(quantity=line.quantity, unit_price=line.actual_price)
                self._call(
                    step,
                    applied,
                    service.update_order_item,
                    self.order_id,
                    order_item_id,
                    update,
                )
                self._persisted[order_item_id] = (line.quantity, line.actual_price)

            result = self._call(
                "update order", applied, service.update_order, self.order_id, plan.order_update
            )
        finally:
            self.saving = False

        logger.info("edit_session_saved", order_id=self.order_id, calls=len(applied))
        return result

    def _call(self, step: str, applied: list[str], fn, *args):
        try:
            result = fn(*args)
        except OrderServiceError as e:
            logger.warning(
                "edit_session_save_failed",
                order_id=self.order_id,
                step=step,
                applied=applied,
                reason=str(e),
            )
            raise PartialSaveError(step, str(e), list(applied)) from e
        applied.append(step)
        return result
