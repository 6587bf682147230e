"""Line and order pricing.

A line's actual price has two mutually exclusive sources: a markup on the standard
price, or a manual override. Whichever was set last wins. Markups are always applied
to the standard price, never on top of a previous actual price, so clearing a markup
restores the standard price exactly.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace

from services.api.app.engine.errors import InvalidMarkupError
from services.api.app.engine.line_item import MARKUP_MAX, MARKUP_MIN, LineItem
from services.api.app.engine.money import clamp_percentage, non_negative, to_money


def price_line(standard_price: float, markup_percentage: int | None) -> float:
    if markup_percentage is None:
        return float(standard_price)
    if not MARKUP_MIN <= markup_percentage <= MARKUP_MAX:
        raise InvalidMarkupError(markup_percentage)
    return max(0.0, standard_price * (1 + markup_percentage / 100))


def apply_markup(line: LineItem, markup_percentage: int | None) -> LineItem:
    return replace(
        line,
        markup_percentage=markup_percentage,
        actual_price=price_line(line.standard_price, markup_percentage),
    )


def override_price(line: LineItem, actual_price: float) -> LineItem:
    return replace(line, actual_price=non_negative(actual_price), markup_percentage=None)


@dataclass(frozen=True, slots=True)
class OrderTotals:
    subtotal: float
    discount_percentage: float
    discount_amount: float
    delivery_price: float
    total: float

    def rounded(self) -> dict[str, float]:
        return {
            "subtotal": to_money(self.subtotal),
            "discount_percentage": self.discount_percentage,
            "discount_amount": to_money(self.discount_amount),
            "delivery_price": to_money(self.delivery_price),
            "total": to_money(self.total),
        }


def price_order(
    lines: Iterable[LineItem],
    discount_percentage: float = 0,
    delivery_price: float = 0,
) -> OrderTotals:
    discount_percentage = clamp_percentage(discount_percentage)
    delivery_price = non_negative(delivery_price)

    subtotal = sum((line.line_total for line in lines), 0.0)
    discount_amount = subtotal * discount_percentage / 100
    return OrderTotals(
        subtotal=subtotal,
        discount_percentage=discount_percentage,
        discount_amount=discount_amount,
        delivery_price=delivery_price,
        total=subtotal + delivery_price - discount_amount,
    )


def approximate_subtotal(lines: Iterable[LineItem]) -> float:
    """What the cart would cost at catalog prices, ignoring markups and overrides."""
    return sum((line.quantity * line.standard_price for line in lines), 0.0)
