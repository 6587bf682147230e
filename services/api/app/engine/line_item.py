from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from services.api.app.engine.errors import InvalidMarkupError, LineItemError

MARKUP_MIN = -100
MARKUP_MAX = 100


class ItemType(str, Enum):
    FLOWER = "Flower"
    BOUQUET = "Bouquet"
    SUPPLEMENT = "Supplement"

    @classmethod
    def parse(cls, raw: str | ItemType) -> ItemType:
        if isinstance(raw, ItemType):
            return raw

        text = str(raw or "").strip().lower()
        # Older orders store every non-bouquet line as "Item".
        if text == "item":
            return cls.FLOWER

        for member in cls:
            if member.value.lower() == text:
                return member

        raise LineItemError(f"Unknown item type: {raw!r}")

    @property
    def stackable(self) -> bool:
        return self is not ItemType.BOUQUET


@dataclass(frozen=True, slots=True)
class BouquetComponent:
    name: str
    color: str | None
    quantity: int


@dataclass(frozen=True, slots=True)
class LineItem:
    """One purchasable line in a cart.

    `standard_price` is copied from the catalog when the line is added and never changes.
    `actual_price` is the unit price used for totals. `markup_percentage` is set only
    while the actual price is derived from a markup; a manual price clears it.
    `persisted_id` is the order-item id once the line has been saved.
    """

    item_id: str
    item_type: ItemType
    name: str
    quantity: int
    standard_price: float
    actual_price: float
    markup_percentage: int | None = None
    color: str | None = None
    picture_ref: str | None = None
    bouquet_composition: tuple[BouquetComponent, ...] = field(default_factory=tuple)
    persisted_id: str | None = None

    def __post_init__(self) -> None:
        if not self.item_id:
            raise LineItemError("Line item requires an item id")
        if self.quantity < 1:
            raise LineItemError(f"Quantity must be at least 1, got {self.quantity}")
        if self.item_type is ItemType.BOUQUET and self.quantity != 1:
            raise LineItemError("Bouquet lines always have quantity 1")
        if self.standard_price < 0 or self.actual_price < 0:
            raise LineItemError("Prices cannot be negative")
        if self.bouquet_composition and self.item_type is not ItemType.BOUQUET:
            raise LineItemError("Only bouquet lines carry a composition")
        if self.markup_percentage is not None and not (
            MARKUP_MIN <= self.markup_percentage <= MARKUP_MAX
        ):
            raise InvalidMarkupError(self.markup_percentage)

    @classmethod
    def new(
        cls,
        *,
        item_id: str,
        item_type: ItemType | str,
        name: str,
        quantity: int,
        standard_price: float,
        color: str | None = None,
        picture_ref: str | None = None,
        bouquet_composition: tuple[BouquetComponent, ...] = (),
    ) -> LineItem:
        price = max(0.0, float(standard_price or 0))
        return cls(
            item_id=item_id,
            item_type=ItemType.parse(item_type),
            name=name,
            quantity=quantity,
            standard_price=price,
            actual_price=price,
            color=color,
            picture_ref=picture_ref,
            bouquet_composition=tuple(bouquet_composition),
        )

    @property
    def line_total(self) -> float:
        return self.quantity * self.actual_price

    @property
    def is_new(self) -> bool:
        return self.persisted_id is None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["item_type"] = self.item_type.value
        data["bouquet_composition"] = [asdict(c) for c in self.bouquet_composition]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LineItem:
        composition = tuple(
            BouquetComponent(
                name=str(c.get("name") or ""),
                color=c.get("color"),
                quantity=int(c.get("quantity") or 0),
            )
            for c in data.get("bouquet_composition") or []
        )
        markup = data.get("markup_percentage")
        return cls(
            item_id=str(data["item_id"]),
            item_type=ItemType.parse(data["item_type"]),
            name=str(data.get("name") or ""),
            quantity=int(data["quantity"]),
            standard_price=float(data["standard_price"]),
            actual_price=float(data["actual_price"]),
            markup_percentage=int(markup) if markup is not None else None,
            color=data.get("color"),
            picture_ref=data.get("picture_ref"),
            bouquet_composition=composition,
            persisted_id=data.get("persisted_id"),
        )
