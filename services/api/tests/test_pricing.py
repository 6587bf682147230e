from __future__ import annotations

import pytest
from services.api.app.engine.errors import InvalidMarkupError
from services.api.app.engine.line_item import ItemType, LineItem
from services.api.app.engine.money import to_money
from services.api.app.engine.pricing import (
    apply_markup,
    approximate_subtotal,
    override_price,
    price_line,
    price_order,
)


def _flower(price: float = 2.0, quantity: int = 3) -> LineItem:
    return LineItem.new(
        item_id="f1",
        item_type=ItemType.FLOWER,
        name="Rose",
        quantity=quantity,
        standard_price=price,
    )


def _bouquet(price: float = 25.0) -> LineItem:
    return LineItem.new(
        item_id="b1",
        item_type=ItemType.BOUQUET,
        name="Spring Mix",
        quantity=1,
        standard_price=price,
    )


def test_order_totals_with_discount_and_delivery() -> None:
    totals = price_order([_flower(), _bouquet()], discount_percentage=10, delivery_price=5)

    assert totals.rounded() == {
        "subtotal": 31.0,
        "discount_percentage": 10.0,
        "discount_amount": 3.1,
        "delivery_price": 5.0,
        "total": 32.9,
    }


def test_markup_then_clear_restores_standard_price() -> None:
    line = apply_markup(_flower(), 20)
    assert line.actual_price == pytest.approx(2.40)
    assert line.markup_percentage == 20

    cleared = apply_markup(line, None)
    assert cleared.actual_price == 2.0
    assert cleared.markup_percentage is None


def test_markup_is_always_applied_to_standard_price() -> None:
    line = apply_markup(apply_markup(_flower(), 50), 10)
    assert line.actual_price == pytest.approx(2.2)


def test_markup_minus_100_prices_at_zero() -> None:
    assert price_line(2.0, -100) == 0.0


@pytest.mark.parametrize("markup", [-101, 101, 250])
def test_markup_outside_range_is_rejected(markup: int) -> None:
    with pytest.raises(InvalidMarkupError):
        apply_markup(_flower(), markup)


def test_manual_price_clears_markup_and_last_call_wins() -> None:
    line = override_price(apply_markup(_flower(), 20), 3.75)
    assert line.actual_price == 3.75
    assert line.markup_percentage is None

    line = apply_markup(line, 10)
    assert line.actual_price == pytest.approx(2.2)
    assert line.standard_price == 2.0


def test_negative_manual_price_is_clamped_to_zero() -> None:
    assert override_price(_flower(), -4).actual_price == 0.0


def test_discount_and_delivery_inputs_are_clamped() -> None:
    totals = price_order([_flower()], discount_percentage=150, delivery_price=-3)
    assert totals.discount_percentage == 100.0
    assert totals.delivery_price == 0.0
    assert totals.total == pytest.approx(0.0)


def test_full_precision_until_presentation() -> None:
    line = apply_markup(_flower(price=0.35, quantity=10), 10)
    totals = price_order([line])

    # 0.385 per unit; rounding the unit price first would give 3.90.
    assert totals.subtotal == pytest.approx(3.85)
    assert totals.rounded()["subtotal"] == 3.85
    assert to_money(2.675) == 2.68
    assert to_money(0.125) == 0.13


def test_approximate_subtotal_ignores_markups() -> None:
    lines = [apply_markup(_flower(), 50), _bouquet()]
    assert approximate_subtotal(lines) == pytest.approx(31.0)
