from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from uuid import uuid4

from packages.shared.schemas.order_v1 import (
    BouquetComponentV1,
    BouquetDetailsV1,
    CatalogItemV1,
    CreatedOrderV1,
    OrderCreateV1,
    OrderItemUpdateV1,
    OrderItemV1,
    OrderUpdateV1,
    OrderV1,
    PersistedOrderItemV1,
    PreviousItemV1,
    StatusChangeResultV1,
)
from services.api.app.services.order_service_base import (
    Attachment,
    OrderNotFoundError,
    OrderServiceError,
    StockConflictError,
)

BOUQUET = "Bouquet"
DRAFT = "Draft"
CONFIRMED = "Confirmed"


@dataclass
class _Bouquet:
    item: CatalogItemV1
    location_id: str
    details: BouquetDetailsV1
    sold: bool = False


@dataclass
class _Order:
    id: str
    location_id: str
    status: str
    fields: dict
    items: dict[str, PersistedOrderItemV1] = field(default_factory=dict)
    attachments: list[str] = field(default_factory=list)


class MockOrderService:
    """In-memory order service for tests and local dev.

    Behaves like the real backend where it matters to the engine: a Confirmed order
    has its stock deducted and bouquets marked sold, confirmation is all-or-nothing,
    reverting to Draft restores everything, and an order update on a Confirmed order
    applies the net difference between `previous_items` and the persisted items.
    Item-level calls never touch inventory.
    """

    def __init__(self) -> None:
        self._items: dict[str, dict[str, CatalogItemV1]] = {}
        self._bouquets: dict[str, _Bouquet] = {}
        self._orders: dict[str, _Order] = {}
        self.actions: list[tuple[str, str]] = []
        self.attachments_fail = False

    @classmethod
    def with_demo_data(cls) -> MockOrderService:
        svc = cls()
        svc.add_stock("loc-1", CatalogItemV1(
            id="f-rose", name="Rose", color="Red", category="Flower", standard_price=2.0,
            current_balance=40,
        ))
        svc.add_stock("loc-1", CatalogItemV1(
            id="f-tulip", name="Tulip", color="Yellow", category="Flower", standard_price=1.5,
            current_balance=25,
        ))
        svc.add_stock("loc-1", CatalogItemV1(
            id="s-ribbon", name="Ribbon", color="White", category="Supplement",
            standard_price=0.75, current_balance=100,
        ))
        svc.add_bouquet(
            "loc-1",
            CatalogItemV1(id="b-spring", name="Spring Mix", color="Mixed", standard_price=25.0),
            [BouquetComponentV1(name="Rose", color="Red", quantity=5),
             BouquetComponentV1(name="Tulip", color="Yellow", quantity=7)],
        )
        return svc

    # Setup helpers

    def add_stock(self, location_id: str, item: CatalogItemV1) -> None:
        self._items.setdefault(location_id, {})[item.id] = item

    def add_bouquet(
        self,
        location_id: str,
        item: CatalogItemV1,
        composition: list[BouquetComponentV1] | None = None,
    ) -> None:
        composition = composition or []
        details = BouquetDetailsV1(
            transaction_id=item.id,
            description=item.name,
            composition=composition,
            total_flowers_used=sum(c.quantity for c in composition),
        )
        self._bouquets[item.id] = _Bouquet(
            item=item.model_copy(update={"current_balance": 1}),
            location_id=location_id,
            details=details,
        )

    def balance(self, location_id: str, item_id: str) -> int:
        return self._items[location_id][item_id].current_balance

    def set_balance(self, location_id: str, item_id: str, balance: int) -> None:
        item = self._items[location_id][item_id]
        self._items[location_id][item_id] = item.model_copy(update={"current_balance": balance})

    def bouquet_sold(self, instance_id: str) -> bool:
        return self._bouquets[instance_id].sold

    # OrderService

    def list_available_items(self, location_id: str) -> list[CatalogItemV1]:
        return list(self._items.get(location_id, {}).values())

    def list_available_bouquets(self, location_id: str) -> list[CatalogItemV1]:
        return [
            b.item
            for b in self._bouquets.values()
            if b.location_id == location_id and not b.sold
        ]

    def get_bouquet_details(self, instance_id: str) -> BouquetDetailsV1:
        bouquet = self._bouquets.get(instance_id)
        if bouquet is None:
            raise OrderServiceError("Bouquet not found", status_code=404)
        return bouquet.details

    def get_order(self, order_id: str) -> OrderV1:
        order = self._require(order_id)
        items = list(order.items.values())
        subtotal = sum(i.quantity * i.unit_price for i in items)
        return OrderV1(
            id=order.id,
            shop_location_id=order.location_id,
            order_status=order.status,
            items=items,
            **{k: v for k, v in order.fields.items() if k not in {"subtotal", "total_price"}},
            subtotal=order.fields.get("subtotal", subtotal),
            total_price=order.fields.get("total_price"),
        )

    def create_order(self, payload: OrderCreateV1) -> CreatedOrderV1:
        if payload.order_status not in (DRAFT, CONFIRMED):
            raise OrderServiceError(
                f"Orders are created as Draft or Confirmed, not {payload.order_status}",
                status_code=400,
            )

        order_id = f"ord_{uuid4().hex[:10]}"
        wanted = self._counts(payload.items)

        if payload.order_status == CONFIRMED:
            self._apply_delta(payload.shop_location_id, wanted)
            self.actions.append((order_id, "ORDER_CREATED"))

        fields = payload.model_dump(
            exclude={"items", "order_status", "shop_location_id"}, exclude_none=True
        )
        order = _Order(
            id=order_id,
            location_id=payload.shop_location_id,
            status=payload.order_status,
            fields=fields,
        )
        for item in payload.items:
            stored = self._persist_item(payload.shop_location_id, item)
            order.items[stored.id] = stored
        self._orders[order_id] = order

        return CreatedOrderV1(id=order_id, order_status=order.status, fields=fields)

    def add_order_items(self, order_id: str, items: list[OrderItemV1]) -> list[PersistedOrderItemV1]:
        order = self._require(order_id)
        created = []
        for item in items:
            stored = self._persist_item(order.location_id, item)
            order.items[stored.id] = stored
            created.append(stored)
        return created

    def update_order_item(
        self, order_id: str, order_item_id: str, payload: OrderItemUpdateV1
    ) -> PersistedOrderItemV1:
        order = self._require(order_id)
        current = order.items.get(order_item_id)
        if current is None:
            raise OrderServiceError("Order item not found", status_code=404)
        updated = current.model_copy(
            update={
                "quantity": payload.quantity,
                "unit_price": payload.unit_price,
                "subtotal": payload.quantity * payload.unit_price,
            }
        )
        order.items[order_item_id] = updated
        return updated

    def delete_order_item(self, order_id: str, order_item_id: str) -> None:
        order = self._require(order_id)
        if order.items.pop(order_item_id, None) is None:
            raise OrderServiceError("Order item not found", status_code=404)

    def update_order(self, order_id: str, payload: OrderUpdateV1) -> OrderV1:
        order = self._require(order_id)

        if order.status == CONFIRMED:
            delta = self._counts(order.items.values())
            delta.subtract(self._counts(payload.previous_items))
            self._apply_delta(order.location_id, delta)
            self.actions.append((order_id, "ORDER_ITEMS_RECONCILED"))

        order.fields.update(payload.model_dump(exclude={"previous_items"}, exclude_none=True))
        return self.get_order(order_id)

    def update_order_status(self, order_id: str, new_status: str) -> StatusChangeResultV1:
        order = self._require(order_id)
        previous = order.status
        if new_status == previous:
            raise OrderServiceError("New status is the same as current status", status_code=400)

        counts = self._counts(order.items.values())
        if previous == DRAFT and new_status == CONFIRMED:
            self._apply_delta(order.location_id, counts)
            self.actions.append((order_id, "ORDER_CREATED"))
        elif previous == CONFIRMED and new_status == DRAFT:
            self._apply_delta(order.location_id, Counter({k: -v for k, v in counts.items()}))
            self.actions.append((order_id, "ORDER_REVERTED"))

        order.status = new_status
        return StatusChangeResultV1(previous_status=previous, new_status=new_status)

    def upload_attachment(self, order_id: str, attachment: Attachment) -> None:
        order = self._require(order_id)
        if self.attachments_fail:
            raise OrderServiceError("Attachment storage unavailable", status_code=503)
        order.attachments.append(attachment.filename)

    def attachments_of(self, order_id: str) -> list[str]:
        return list(self._require(order_id).attachments)

    # Internals

    def _require(self, order_id: str) -> _Order:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError()
        return order

    def _persist_item(self, location_id: str, item: OrderItemV1) -> PersistedOrderItemV1:
        if item.item_type == BOUQUET:
            bouquet = self._bouquets.get(item.item_id)
            source = bouquet.item if bouquet else None
            composition = bouquet.details.composition if bouquet else []
        else:
            source = self._items.get(location_id, {}).get(item.item_id)
            composition = []

        return PersistedOrderItemV1(
            id=f"oi_{uuid4().hex[:10]}",
            item_id=item.item_id,
            item_type=item.item_type,
            item_name=source.name if source else item.item_id,
            quantity=item.quantity,
            unit_price=item.unit_price,
            standard_unit_price=source.standard_price if source else None,
            subtotal=item.quantity * item.unit_price,
            color=source.color if source else None,
            bouquet_composition=list(composition),
        )

    @staticmethod
    def _counts(items: Iterable[OrderItemV1 | PersistedOrderItemV1 | PreviousItemV1]) -> Counter:
        out: Counter = Counter()
        for item in items:
            out[(item.item_id, item.item_type)] += item.quantity
        return out

    def _apply_delta(self, location_id: str, delta: Counter) -> None:
        """Deduct positive and return negative quantities, all or nothing."""

        stock = self._items.get(location_id, {})
        problems: list[str] = []
        for (item_id, item_type), qty in delta.items():
            if qty <= 0:
                continue
            if item_type == BOUQUET:
                bouquet = self._bouquets.get(item_id)
                if bouquet is None or bouquet.sold:
                    problems.append(f"Bouquet {item_id} is no longer available")
                continue
            item = stock.get(item_id)
            if item is None or item.current_balance < qty:
                have = item.current_balance if item else 0
                problems.append(f"Insufficient stock for {item_id}: need {qty}, have {have}")

        if problems:
            raise StockConflictError("; ".join(problems))

        for (item_id, item_type), qty in delta.items():
            if qty == 0:
                continue
            if item_type == BOUQUET:
                if item_id in self._bouquets:
                    self._bouquets[item_id].sold = qty > 0
                continue
            item = stock.get(item_id)
            if item is not None:
                stock[item_id] = item.model_copy(
                    update={"current_balance": item.current_balance - qty}
                )


order_backend = MockOrderService.with_demo_data()
