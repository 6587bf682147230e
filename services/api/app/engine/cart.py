"""Cart state and its mutations.

Every mutation is a pure reducer `(Cart, action) -> Cart`. CartStore holds the
current cart for one editing session and routes each call through the reducer, so
totals can be recomputed immediately after any mutation.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from typing import Union

import structlog

from services.api.app.engine.errors import ItemNotInCartError, LineItemError
from services.api.app.engine.line_item import LineItem
from services.api.app.engine.money import clamp_percentage, non_negative
from services.api.app.engine.pricing import (
    OrderTotals,
    apply_markup,
    approximate_subtotal,
    override_price,
    price_order,
)
from services.api.app.engine.stock_guard import StockGuard

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class Cart:
    lines: tuple[LineItem, ...] = ()

    def __post_init__(self) -> None:
        ids = [line.item_id for line in self.lines]
        if len(ids) != len(set(ids)):
            raise LineItemError("A cart cannot hold two lines for the same item")

    def __iter__(self) -> Iterator[LineItem]:
        return iter(self.lines)

    def __len__(self) -> int:
        return len(self.lines)

    def __contains__(self, item_id: object) -> bool:
        return any(line.item_id == item_id for line in self.lines)

    def get(self, item_id: str) -> LineItem | None:
        for line in self.lines:
            if line.item_id == item_id:
                return line
        return None

    def require(self, item_id: str) -> LineItem:
        line = self.get(item_id)
        if line is None:
            raise ItemNotInCartError(item_id)
        return line

    def replace_line(self, line: LineItem) -> Cart:
        return Cart(tuple(line if cur.item_id == line.item_id else cur for cur in self.lines))

    def without(self, item_id: str) -> Cart:
        return Cart(tuple(line for line in self.lines if line.item_id != item_id))


@dataclass(frozen=True, slots=True)
class AddLine:
    line: LineItem


@dataclass(frozen=True, slots=True)
class RemoveLine:
    item_id: str


@dataclass(frozen=True, slots=True)
class SetQuantity:
    item_id: str
    quantity: int


@dataclass(frozen=True, slots=True)
class AdjustQuantity:
    item_id: str
    delta: int


@dataclass(frozen=True, slots=True)
class SetMarkup:
    item_id: str
    markup_percentage: int | None


@dataclass(frozen=True, slots=True)
class SetPrice:
    item_id: str
    actual_price: float


CartAction = Union[AddLine, RemoveLine, SetQuantity, AdjustQuantity, SetMarkup, SetPrice]


def reduce_cart(cart: Cart, action: CartAction, guard: StockGuard) -> Cart:
    if isinstance(action, AddLine):
        return _add_line(cart, action.line, guard)

    if isinstance(action, RemoveLine):
        cart.require(action.item_id)
        return cart.without(action.item_id)

    if isinstance(action, SetQuantity):
        line = cart.require(action.item_id)
        quantity = guard.set_quantity(line, action.quantity)
        return cart.replace_line(replace(line, quantity=quantity))

    if isinstance(action, AdjustQuantity):
        line = cart.require(action.item_id)
        quantity = guard.clamp_quantity(line, action.delta)
        return cart.replace_line(replace(line, quantity=quantity))

    if isinstance(action, SetMarkup):
        line = cart.require(action.item_id)
        return cart.replace_line(apply_markup(line, action.markup_percentage))

    if isinstance(action, SetPrice):
        line = cart.require(action.item_id)
        return cart.replace_line(override_price(line, action.actual_price))

    raise TypeError(f"Unknown cart action: {action!r}")


def _add_line(cart: Cart, line: LineItem, guard: StockGuard) -> Cart:
    existing = cart.get(line.item_id)
    if existing is not None:
        # Re-adding an item sets the quantity on the existing line.
        if not existing.item_type.stackable:
            return cart
        quantity = guard.set_quantity(existing, line.quantity)
        return cart.replace_line(replace(existing, quantity=quantity))

    quantity = guard.admit(line.item_type, line.item_id, line.quantity)
    if quantity is None:
        return cart
    return Cart(cart.lines + (replace(line, quantity=quantity),))


@dataclass
class CartStore:
    """Mutable cart for one editing session.

    Removing a line that was already saved queues its persisted id so the save can
    delete it from the order.
    """

    guard: StockGuard
    cart: Cart = field(default_factory=Cart)
    discount_percentage: float = 0.0
    delivery_price: float = 0.0
    removed_persisted_ids: list[str] = field(default_factory=list)

    @property
    def lines(self) -> tuple[LineItem, ...]:
        return self.cart.lines

    def dispatch(self, action: CartAction) -> Cart:
        removed = None
        if isinstance(action, RemoveLine):
            removed = self.cart.get(action.item_id)

        self.cart = reduce_cart(self.cart, action, self.guard)

        if removed is not None and removed.persisted_id:
            self.removed_persisted_ids.append(removed.persisted_id)

        logger.debug("cart_action_applied", action=type(action).__name__, lines=len(self.cart))
        return self.cart

    def add_or_update(self, line: LineItem) -> LineItem | None:
        self.dispatch(AddLine(line))
        return self.cart.get(line.item_id)

    def remove(self, item_id: str) -> None:
        self.dispatch(RemoveLine(item_id))

    def set_quantity(self, item_id: str, quantity: int) -> LineItem:
        self.dispatch(SetQuantity(item_id, quantity))
        return self.cart.require(item_id)

    def adjust_quantity(self, item_id: str, delta: int) -> LineItem:
        self.dispatch(AdjustQuantity(item_id, delta))
        return self.cart.require(item_id)

    def set_markup(self, item_id: str, markup_percentage: int | None) -> LineItem:
        self.dispatch(SetMarkup(item_id, markup_percentage))
        return self.cart.require(item_id)

    def set_price(self, item_id: str, actual_price: float) -> LineItem:
        self.dispatch(SetPrice(item_id, actual_price))
        return self.cart.require(item_id)

    def set_discount(self, discount_percentage: float) -> None:
        self.discount_percentage = clamp_percentage(discount_percentage)

    def set_delivery_price(self, delivery_price: float) -> None:
        self.delivery_price = non_negative(delivery_price)

    def mark_persisted(self, item_id: str, persisted_id: str) -> None:
        line = self.cart.require(item_id)
        self.cart = self.cart.replace_line(replace(line, persisted_id=persisted_id))

    @property
    def totals(self) -> OrderTotals:
        return price_order(self.cart.lines, self.discount_percentage, self.delivery_price)

    @property
    def approximate_subtotal(self) -> float:
        return approximate_subtotal(self.cart.lines)
