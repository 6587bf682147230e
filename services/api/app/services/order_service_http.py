from __future__ import annotations

import os
from typing import Any

import httpx
import structlog

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
    StatusChangeV1,
)
from services.api.app.services.order_service_base import (
    Attachment,
    OrderNotFoundError,
    OrderServiceError,
    StockConflictError,
)

logger = structlog.get_logger()

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT_S = 10.0


def error_message(response: httpx.Response) -> str:
    """Pull a readable message out of an error response.

    The service answers with `{"detail": "..."}` for domain errors and with a list of
    `{"loc": [...], "msg": "..."}` entries for request validation errors.
    """

    try:
        body = response.json()
    except ValueError:
        body = None

    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, str) and detail:
        return detail
    if isinstance(detail, list) and detail:
        parts = []
        for entry in detail:
            if not isinstance(entry, dict):
                parts.append(str(entry))
                continue
            loc = entry.get("loc") or []
            where = ".".join(str(p) for p in loc if p != "body")
            msg = str(entry.get("msg") or "invalid value")
            parts.append(f"{where} - {msg}" if where else msg)
        return "; ".join(parts)

    text = response.text.strip()
    return text or f"Request failed with status {response.status_code}"


class HttpOrderService:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_S,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_env(cls) -> HttpOrderService:
        raw_timeout = os.getenv("FLORIST_ORDER_SERVICE_TIMEOUT", str(DEFAULT_TIMEOUT_S))
        try:
            timeout = float(raw_timeout)
        except ValueError as e:
            raise ValueError(
                f"FLORIST_ORDER_SERVICE_TIMEOUT must be a number of seconds, got {raw_timeout!r}"
            ) from e

        return cls(
            os.getenv("FLORIST_ORDER_SERVICE_URL", DEFAULT_BASE_URL),
            token=os.getenv("FLORIST_ORDER_SERVICE_TOKEN") or None,
            timeout=timeout,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("order_service_unreachable", method=method, path=path, error=str(e))
            raise OrderServiceError(str(e) or type(e).__name__) from e

        if response.is_success:
            if response.status_code == 204 or not response.content:
                return None
            return response.json()

        message = error_message(response)
        logger.info(
            "order_service_error",
            method=method,
            path=path,
            status_code=response.status_code,
            reason=message,
        )
        if response.status_code == 404:
            raise OrderNotFoundError(message)
        if response.status_code == 409:
            raise StockConflictError(message)
        raise OrderServiceError(message, status_code=response.status_code)

    def list_available_items(self, location_id: str) -> list[CatalogItemV1]:
        rows = self._request(
            "GET", "/orders/available-items", params={"shop_location_id": location_id}
        )
        return [CatalogItemV1.model_validate(row) for row in rows or []]

    def list_available_bouquets(self, location_id: str) -> list[CatalogItemV1]:
        rows = self._request(
            "GET", "/orders/available-bouquets", params={"shop_location_id": location_id}
        )
        return [CatalogItemV1.model_validate(row) for row in rows or []]

    def get_bouquet_details(self, instance_id: str) -> BouquetDetailsV1:
        return BouquetDetailsV1.model_validate(
            self._request("GET", f"/bouquet-details/{instance_id}")
        )

    def get_order(self, order_id: str) -> OrderV1:
        return OrderV1.model_validate(self._request("GET", f"/orders/{order_id}"))

    def create_order(self, payload: OrderCreateV1) -> CreatedOrderV1:
        data = self._request("POST", "/orders", json=payload.model_dump(exclude_none=True))
        data = dict(data or {})
        if "id" not in data and "order_id" in data:
            data["id"] = data["order_id"]
        data.setdefault("order_status", payload.order_status)
        return CreatedOrderV1.model_validate(data)

    def add_order_items(
        self, order_id: str, items: list[OrderItemV1]
    ) -> list[PersistedOrderItemV1]:
        rows = self._request(
            "POST",
            f"/orders/{order_id}/items",
            json=[item.model_dump() for item in items],
        )
        return [PersistedOrderItemV1.model_validate(row) for row in rows or []]

    def update_order_item(
        self, order_id: str, order_item_id: str, payload: OrderItemUpdateV1
    ) -> PersistedOrderItemV1:
        data = self._request(
            "PATCH", f"/orders/{order_id}/items/{order_item_id}", json=payload.model_dump()
        )
        return PersistedOrderItemV1.model_validate(data)

    def delete_order_item(self, order_id: str, order_item_id: str) -> None:
        self._request("DELETE", f"/orders/{order_id}/items/{order_item_id}")

    def update_order(self, order_id: str, payload: OrderUpdateV1) -> OrderV1:
        data = self._request(
            "PATCH", f"/orders/{order_id}", json=payload.model_dump(exclude_none=True)
        )
        return OrderV1.model_validate(data)

    def update_order_status(self, order_id: str, new_status: str) -> StatusChangeResultV1:
        data = self._request(
            "PATCH",
            f"/orders/{order_id}/status",
            json=StatusChangeV1(new_status=new_status).model_dump(),
        )
        return StatusChangeResultV1.model_validate(data)

    def upload_attachment(self, order_id: str, attachment: Attachment) -> None:
        self._request(
            "POST",
            f"/orders/{order_id}/attachments",
            files={"file": (attachment.filename, attachment.content, attachment.content_type)},
        )
