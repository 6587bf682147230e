from __future__ import annotations

import json

import httpx
import pytest
from packages.shared.schemas.order_v1 import (
    OrderCreateV1,
    OrderItemUpdateV1,
    OrderItemV1,
    OrderUpdateV1,
)
from services.api.app.services.order_service_base import (
    Attachment,
    OrderNotFoundError,
    OrderServiceError,
    StockConflictError,
)
from services.api.app.services.order_service_http import HttpOrderService


def _service(handler) -> HttpOrderService:
    return HttpOrderService(
        "http://orders.test",
        token="secret",
        transport=httpx.MockTransport(handler),
    )


def _create_payload() -> OrderCreateV1:
    return OrderCreateV1(
        shop_location_id="loc-1",
        order_status="Confirmed",
        client_id="c-1",
        subtotal=6.0,
        items=[OrderItemV1(item_id="f1", item_type="Flower", quantity=3, unit_price=2.0)],
    )


def test_lists_items_with_location_and_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[{"id": "f1", "name": "Rose", "standard_price": 2.0, "current_balance": 4, "x": 1}],
        )

    items = _service(handler).list_available_items("loc-1")

    assert items[0].current_balance == 4
    assert seen[0].url.path == "/orders/available-items"
    assert seen[0].url.params["shop_location_id"] == "loc-1"
    assert seen[0].headers["Authorization"] == "Bearer secret"


def test_create_accepts_order_id_key() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["items"][0]["item_id"] == "f1"
        assert "delivery_address" not in body
        return httpx.Response(201, json={"order_id": "ord-9"})

    created = _service(handler).create_order(_create_payload())

    assert created.id == "ord-9"
    assert created.order_status == "Confirmed"


def test_validation_detail_list_is_joined() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            422,
            json={
                "detail": [
                    {"loc": ["body", "items", 0, "quantity"], "msg": "must be positive"},
                    {"loc": ["body", "client_id"], "msg": "field required"},
                ]
            },
        )

    with pytest.raises(OrderServiceError) as exc:
        _service(handler).create_order(_create_payload())

    assert str(exc.value) == "items.0.quantity - must be positive; client_id - field required"
    assert exc.value.status_code == 422


@pytest.mark.parametrize(
    ("status", "error_type"),
    [(404, OrderNotFoundError), (409, StockConflictError), (500, OrderServiceError)],
)
def test_status_codes_map_to_errors(status: int, error_type: type[Exception]) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"detail": "Insufficient stock for f1"})

    with pytest.raises(error_type, match="Insufficient stock for f1") as exc:
        _service(handler).update_order_status("ord-1", "Confirmed")

    assert exc.value.status_code == status


def test_plain_text_error_body_is_used() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="upstream down")

    with pytest.raises(OrderServiceError, match="upstream down"):
        _service(handler).get_order("ord-1")


def test_transport_error_becomes_service_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(OrderServiceError, match="connection refused") as exc:
        _service(handler).get_order("ord-1")

    assert exc.value.status_code is None


def test_edit_save_and_status_calls_use_patch() -> None:
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        if request.method == "DELETE":
            return httpx.Response(204)
        if request.url.path.endswith("/status"):
            return httpx.Response(200, json={"previous_status": "Draft", "new_status": "Confirmed"})
        if "/items/" in request.url.path:
            return httpx.Response(
                200,
                json={
                    "id": "oi-1",
                    "item_id": "f1",
                    "item_type": "Flower",
                    "quantity": 2,
                    "unit_price": 2.0,
                },
            )
        return httpx.Response(
            200, json={"id": "ord-1", "shop_location_id": "loc-1", "order_status": "Confirmed"}
        )

    svc = _service(handler)
    result = svc.update_order_status("ord-1", "Confirmed")
    svc.update_order_item("ord-1", "oi-1", OrderItemUpdateV1(quantity=2, unit_price=2.0))
    svc.update_order("ord-1", OrderUpdateV1(client_id="c-1", subtotal=4.0, total_price=4.0))
    svc.delete_order_item("ord-1", "oi-1")

    assert result.new_status == "Confirmed"
    assert seen == [
        ("PATCH", "/orders/ord-1/status"),
        ("PATCH", "/orders/ord-1/items/oi-1"),
        ("PATCH", "/orders/ord-1"),
        ("DELETE", "/orders/ord-1/items/oi-1"),
    ]


def test_bouquet_details_path() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(
            200,
            json={
                "transaction_id": "tx-1",
                "composition": [{"name": "Rose", "color": "Red", "quantity": 5}],
                "total_flowers_used": 5,
            },
        )

    details = _service(handler).get_bouquet_details("b-1")

    assert seen == ["/bouquet-details/b-1"]
    assert details.composition[0].quantity == 5


def test_attachment_is_sent_as_multipart() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["content-type"].startswith("multipart/form-data")
        assert b"card.txt" in request.content
        return httpx.Response(200, json={"ok": True})

    _service(handler).upload_attachment("ord-1", Attachment("card.txt", b"hello", "text/plain"))


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FLORIST_ORDER_SERVICE_TIMEOUT", "soon")
    with pytest.raises(ValueError, match="FLORIST_ORDER_SERVICE_TIMEOUT"):
        HttpOrderService.from_env()

    monkeypatch.setenv("FLORIST_ORDER_SERVICE_TIMEOUT", "2.5")
    monkeypatch.setenv("FLORIST_ORDER_SERVICE_URL", "http://orders.internal/")
    svc = HttpOrderService.from_env()
    assert svc._client.base_url.host == "orders.internal"
    assert svc._client.timeout.read == 2.5
