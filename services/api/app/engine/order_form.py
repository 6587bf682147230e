from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from packages.shared.schemas.order_v1 import OrderCreateV1, OrderFieldsV1, OrderItemV1
from services.api.app.engine.cart import CartStore
from services.api.app.engine.errors import OrderValidationError
from services.api.app.engine.money import to_money
from services.api.app.engine.stock_guard import StockGuard


class DeliveryType(str, Enum):
    PICKUP = "Pickup"
    DELIVERY = "Delivery"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    REFUNDED = "Refunded"


class PaymentMethod(str, Enum):
    CASH = "Cash"
    CARD = "Card"
    BANK_TRANSFER = "Bank Transfer"
    OTHER = "Other"


@dataclass(frozen=True, slots=True)
class OrderFields:
    client_id: str | None = None
    delivery_type: DeliveryType = DeliveryType.PICKUP
    delivery_address: str = ""
    delivery_date_time: str | None = None
    notes: str = ""
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: PaymentMethod | None = None

    def to_wire(self) -> OrderFieldsV1:
        is_delivery = self.delivery_type is DeliveryType.DELIVERY
        send_method = self.payment_status is not PaymentStatus.PENDING
        return OrderFieldsV1(
            client_id=self.client_id,
            delivery_type=self.delivery_type.value,
            delivery_address=self.delivery_address.strip() if is_delivery else None,
            delivery_date_time=self.delivery_date_time or None,
            notes=self.notes or None,
            payment_status=self.payment_status.value,
            payment_method=(
                self.payment_method.value if send_method and self.payment_method else None
            ),
        )

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "delivery_type": self.delivery_type.value,
            "delivery_address": self.delivery_address,
            "delivery_date_time": self.delivery_date_time,
            "notes": self.notes,
            "payment_status": self.payment_status.value,
            "payment_method": self.payment_method.value if self.payment_method else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> OrderFields:
        method = data.get("payment_method")
        return cls(
            client_id=data.get("client_id") or None,
            delivery_type=DeliveryType(data.get("delivery_type") or DeliveryType.PICKUP.value),
            delivery_address=data.get("delivery_address") or "",
            delivery_date_time=data.get("delivery_date_time") or None,
            notes=data.get("notes") or "",
            payment_status=PaymentStatus(data.get("payment_status") or PaymentStatus.PENDING.value),
            payment_method=PaymentMethod(method) if method else None,
        )


def validate_order(
    fields: OrderFields,
    store: CartStore,
    guard: StockGuard,
) -> None:
    """Raise OrderValidationError listing every problem found before any network call."""

    issues: list[str] = []

    if not fields.client_id:
        issues.append("Please select a client")
    if fields.delivery_type is DeliveryType.DELIVERY and not fields.delivery_address.strip():
        issues.append("Please enter delivery address")
    if not store.lines:
        issues.append("Please add at least one item to the order")

    issues.extend(str(e) for e in guard.shortfalls(store.lines))

    if issues:
        raise OrderValidationError(issues)


def order_items_payload(store: CartStore) -> list[OrderItemV1]:
    return [
        OrderItemV1(
            item_id=line.item_id,
            item_type=line.item_type.value,
            quantity=line.quantity,
            unit_price=line.actual_price,
        )
        for line in store.lines
    ]


def build_create_payload(
    fields: OrderFields,
    store: CartStore,
    *,
    order_status: str,
    location_id: str,
) -> OrderCreateV1:
    totals = store.totals
    return OrderCreateV1(
        **fields.to_wire().model_dump(),
        shop_location_id=location_id,
        order_status=order_status,
        subtotal=to_money(totals.subtotal),
        discount_percentage=totals.discount_percentage,
        discount_amount=to_money(totals.discount_amount),
        delivery_price=to_money(totals.delivery_price),
        items=order_items_payload(store),
    )
