from __future__ import annotations

from collections.abc import Iterable

from packages.shared.schemas.order_v1 import (
    BouquetDetailsV1,
    CatalogItemV1,
    PersistedOrderItemV1,
)
from services.api.app.engine.line_item import BouquetComponent, ItemType, LineItem
from services.api.app.engine.stock_guard import StockBook


def item_type_for_category(category: str | None) -> ItemType:
    if (category or "").strip().lower() == "flower":
        return ItemType.FLOWER
    return ItemType.SUPPLEMENT


def stock_book_from_catalog(location_id: str, items: Iterable[CatalogItemV1]) -> StockBook:
    return StockBook(location_id, {item.id: item.current_balance for item in items})


def line_from_catalog(item: CatalogItemV1, quantity: int) -> LineItem:
    return LineItem.new(
        item_id=item.id,
        item_type=item_type_for_category(item.category),
        name=item.name,
        quantity=quantity,
        standard_price=item.standard_price,
        color=item.color,
        picture_ref=item.picture,
    )


def bouquet_line(item: CatalogItemV1, details: BouquetDetailsV1 | None) -> LineItem:
    composition: tuple[BouquetComponent, ...] = ()
    if details is not None:
        composition = tuple(
            BouquetComponent(name=c.name, color=c.color, quantity=c.quantity)
            for c in details.composition
        )

    return LineItem.new(
        item_id=item.id,
        item_type=ItemType.BOUQUET,
        name=item.name,
        quantity=1,
        standard_price=item.standard_price,
        color=item.color,
        picture_ref=item.picture,
        bouquet_composition=composition,
    )


def line_from_persisted(item: PersistedOrderItemV1) -> LineItem:
    standard = item.standard_unit_price if item.standard_unit_price is not None else item.unit_price
    return LineItem(
        item_id=item.item_id,
        item_type=ItemType.parse(item.item_type),
        name=item.item_name,
        quantity=item.quantity,
        standard_price=max(0.0, standard),
        actual_price=max(0.0, item.unit_price),
        color=item.color,
        picture_ref=item.picture,
        bouquet_composition=tuple(
            BouquetComponent(name=c.name, color=c.color, quantity=c.quantity)
            for c in item.bouquet_composition
        ),
        persisted_id=item.id,
    )
