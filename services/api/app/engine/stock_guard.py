"""Quantity checks against the latest known stock for one shop location.

Balances live in a StockBook that is refreshed from catalog fetches. Lines never
cache a balance; every check reads the book at call time.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from enum import Enum

import structlog

from services.api.app.engine.errors import (
    BouquetQuantityPinnedError,
    InsufficientStockError,
    LineItemError,
)
from services.api.app.engine.line_item import ItemType, LineItem

logger = structlog.get_logger()


class StockPolicy(str, Enum):
    REJECT = "reject"
    TRUNCATE = "truncate"


def get_stock_policy() -> StockPolicy:
    raw = os.getenv("FLORIST_STOCK_POLICY", "reject").strip().lower()
    try:
        return StockPolicy(raw)
    except ValueError:
        raise ValueError(
            f"Unknown FLORIST_STOCK_POLICY={raw!r}. Expected reject or truncate."
        ) from None


class StockBook:
    def __init__(self, location_id: str, balances: Mapping[str, int] | None = None) -> None:
        self.location_id = location_id
        self._balances: dict[str, int] = dict(balances or {})

    def balance_of(self, item_id: str) -> int | None:
        return self._balances.get(item_id)

    def update(self, balances: Mapping[str, int]) -> None:
        self._balances.update({k: int(v) for k, v in balances.items()})

    def replace(self, balances: Mapping[str, int]) -> None:
        self._balances = {k: int(v) for k, v in balances.items()}

    def as_dict(self) -> dict[str, int]:
        return dict(self._balances)


class StockGuard:
    def __init__(
        self,
        book: StockBook,
        policy: StockPolicy = StockPolicy.REJECT,
        reserved: Mapping[str, int] | None = None,
    ) -> None:
        self.book = book
        self.policy = policy
        # Units already deducted for the order being edited count as available to it.
        self.reserved: dict[str, int] = dict(reserved or {})

    def available(self, item_id: str) -> int | None:
        balance = self.book.balance_of(item_id)
        if balance is None:
            return None
        return balance + self.reserved.get(item_id, 0)

    def clamp_quantity(self, line: LineItem, delta: int) -> int:
        """Return the line's quantity after applying `delta`.

        Decreases stop at 1. An increase past the known balance raises
        InsufficientStockError under the reject policy, or is capped at the balance
        under the truncate policy. Bouquets refuse any change.
        """

        if line.item_type is ItemType.BOUQUET:
            if delta != 0:
                raise BouquetQuantityPinnedError(line.item_id)
            return 1

        new_quantity = max(1, line.quantity + delta)
        if delta <= 0:
            return new_quantity

        return self._cap(line.item_id, new_quantity, floor=line.quantity)

    def set_quantity(self, line: LineItem, quantity: int) -> int:
        return self.clamp_quantity(line, int(quantity) - line.quantity)

    def admit(self, item_type: ItemType, item_id: str, quantity: int) -> int | None:
        """Quantity for a brand-new line, or None when nothing should be added."""

        if quantity < 0:
            raise LineItemError(f"Quantity cannot be negative, got {quantity}")
        if quantity == 0:
            return None

        if item_type is ItemType.BOUQUET:
            if quantity != 1:
                raise BouquetQuantityPinnedError(item_id)
            return 1

        return self._cap(item_id, quantity, floor=1)

    def shortfalls(self, lines: Iterable[LineItem]) -> list[InsufficientStockError]:
        """Lines asking for more than is available."""

        out: list[InsufficientStockError] = []
        for line in lines:
            if line.item_type is ItemType.BOUQUET:
                continue
            available = self.available(line.item_id)
            if available is None:
                continue
            if line.quantity > available:
                out.append(InsufficientStockError(line.item_id, line.quantity, available))
        return out

    def _cap(self, item_id: str, quantity: int, *, floor: int) -> int:
        balance = self.available(item_id)
        if balance is None or quantity <= balance:
            return quantity

        if self.policy is StockPolicy.REJECT:
            raise InsufficientStockError(item_id, quantity, balance)

        capped = max(floor, min(quantity, balance), 1)
        logger.warning(
            "quantity_limited_to_stock",
            item_id=item_id,
            requested=quantity,
            available=balance,
            quantity=capped,
        )
        return capped
