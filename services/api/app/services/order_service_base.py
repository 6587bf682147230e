from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from packages.shared.schemas.order_v1 import (
    BouquetDetailsV1,
    CatalogItemV1,
    CreatedOrderV1,
    OrderCreateV1,
    OrderItemUpdateV1,
    OrderItemV1,
    OrderUpdateV1,
    OrderV1,
    PersistedOrderItemV1,
    StatusChangeResultV1,
)


class OrderServiceError(Exception):
    """Base class for order service errors.

    The message is human readable: the server's error detail when it sent one, or the
    transport error text otherwise.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class OrderNotFoundError(OrderServiceError):
    def __init__(self, message: str = "Order not found") -> None:
        super().__init__(message, status_code=404)


class StockConflictError(OrderServiceError):
    """The service refused a change because stock or a bouquet is no longer available."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=409)


@dataclass(frozen=True, slots=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


class OrderService(Protocol):
    def list_available_items(self, location_id: str) -> list[CatalogItemV1]: ...

    def list_available_bouquets(self, location_id: str) -> list[CatalogItemV1]: ...

    def get_bouquet_details(self, instance_id: str) -> BouquetDetailsV1: ...

    def get_order(self, order_id: str) -> OrderV1: ...

    def create_order(self, payload: OrderCreateV1) -> CreatedOrderV1: ...

    def add_order_items(
        self, order_id: str, items: list[OrderItemV1]
    ) -> list[PersistedOrderItemV1]: ...

    def update_order_item(
        self, order_id: str, order_item_id: str, payload: OrderItemUpdateV1
    ) -> PersistedOrderItemV1: ...

    def delete_order_item(self, order_id: str, order_item_id: str) -> None: ...

    def update_order(self, order_id: str, payload: OrderUpdateV1) -> OrderV1: ...

    def update_order_status(self, order_id: str, new_status: str) -> StatusChangeResultV1: ...

    def upload_attachment(self, order_id: str, attachment: Attachment) -> None: ...
