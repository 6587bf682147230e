from __future__ import annotations

import threading
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from packages.shared.schemas.order_v1 import CatalogItemV1, OrderCreateV1, OrderItemV1
from services.api.app.services.order_service_base import OrderServiceError
from services.api.app.services.order_service_mock import MockOrderService


@pytest.fixture()
def backend(monkeypatch: pytest.MonkeyPatch) -> MockOrderService:
    svc = MockOrderService()
    svc.add_stock("loc-1", CatalogItemV1(
        id="f1", name="Rose", category="Flower", standard_price=2.0, current_balance=10,
    ))
    svc.add_stock("loc-1", CatalogItemV1(
        id="f2", name="Tulip", category="Flower", standard_price=3.0, current_balance=10,
    ))

    import services.api.app.routers.cart as cart_router
    import services.api.app.routers.order as order_router

    monkeypatch.setattr(cart_router, "get_order_service", lambda: svc)
    monkeypatch.setattr(order_router, "get_order_service", lambda: svc)
    return svc


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, backend: MockOrderService) -> TestClient:
    db_path = tmp_path / "florist_edit.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("FLORIST_DB_AUTO_CREATE", "true")
    monkeypatch.delenv("FLORIST_STOCK_POLICY", raising=False)

    from services.api.app.main import app

    with TestClient(app) as c:
        yield c


def _order(backend: MockOrderService, status: str, *items: tuple[str, int]) -> str:
    created = backend.create_order(
        OrderCreateV1(
            shop_location_id="loc-1",
            order_status=status,
            client_id="c-1",
            subtotal=0,
            items=[
                OrderItemV1(item_id=i, item_type="Flower", quantity=q, unit_price=2.0)
                for i, q in items
            ],
        )
    )
    return created.id


def _edit(client: TestClient, order_id: str) -> dict:
    resp = client.post(f"/v1/orders/{order_id}/edit")
    assert resp.status_code == 200
    return resp.json()


def test_edit_swap_line_and_save(client: TestClient, backend: MockOrderService) -> None:
    order_id = _order(backend, "Confirmed", ("f1", 2))
    cart = _edit(client, order_id)
    assert cart["kind"] == "EDIT"
    assert cart["order_status"] == "Confirmed"
    assert [(line["item_id"], line["quantity"]) for line in cart["lines"]] == [("f1", 2)]

    cart_id = cart["cart_id"]
    assert client.delete(f"/v1/carts/{cart_id}/items/f1").status_code == 200
    assert client.post(f"/v1/carts/{cart_id}/items", json={"item_id": "f2"}).status_code == 200

    resp = client.post(f"/v1/carts/{cart_id}/save")
    assert resp.status_code == 200
    body = resp.json()
    assert body["order_id"] == order_id
    assert body["cart"]["status"] == "CLOSED"

    assert backend.balance("loc-1", "f1") == 10
    assert backend.balance("loc-1", "f2") == 9

    events = [e["event_type"] for e in client.get(f"/v1/carts/{cart_id}/events").json()]
    assert events[0] == "EDIT_SESSION_STARTED"
    assert events[-1] == "ORDER_SAVED"


def test_edit_of_confirmed_order_can_use_its_own_units(
    client: TestClient, backend: MockOrderService
) -> None:
    order_id = _order(backend, "Confirmed", ("f1", 4))
    cart_id = _edit(client, order_id)["cart_id"]

    ok = client.post(
        f"/v1/carts/{cart_id}/actions",
        json={"actions": [{"type": "set_quantity", "item_id": "f1", "quantity": 10}]},
    )
    too_many = client.post(
        f"/v1/carts/{cart_id}/actions",
        json={"actions": [{"type": "set_quantity", "item_id": "f1", "quantity": 11}]},
    )

    assert ok.status_code == 200
    assert too_many.status_code == 409


def test_partial_save_is_502_and_retry_resumes(
    client: TestClient, backend: MockOrderService, monkeypatch: pytest.MonkeyPatch
) -> None:
    order_id = _order(backend, "Confirmed", ("f1", 2))
    cart_id = _edit(client, order_id)["cart_id"]
    client.delete(f"/v1/carts/{cart_id}/items/f1")
    client.post(f"/v1/carts/{cart_id}/items", json={"item_id": "f2", "quantity": 1})

    real_update = backend.update_order
    added: list[int] = []
    real_add = backend.add_order_items

    def failing_update(order_id: str, payload):
        raise OrderServiceError("Service unavailable", status_code=503)

    def counting_add(order_id: str, items):
        added.append(len(items))
        return real_add(order_id, items)

    monkeypatch.setattr(backend, "update_order", failing_update)
    monkeypatch.setattr(backend, "add_order_items", counting_add)

    resp = client.post(f"/v1/carts/{cart_id}/save")
    assert resp.status_code == 502
    detail = resp.json()["detail"]
    assert detail["failed_step"] == "update order"
    assert len(detail["applied"]) == 2

    cart = client.get(f"/v1/carts/{cart_id}").json()
    assert cart["status"] == "OPEN"
    assert cart["lines"][0]["persisted_id"] is not None

    monkeypatch.setattr(backend, "update_order", real_update)
    resp = client.post(f"/v1/carts/{cart_id}/save")
    assert resp.status_code == 200
    assert added == [1]
    assert len(backend.get_order(order_id).items) == 1
    assert backend.balance("loc-1", "f1") == 10
    assert backend.balance("loc-1", "f2") == 9


def test_save_while_saving_is_409(client: TestClient, backend: MockOrderService) -> None:
    from services.api.app.db.database import db_session
    from services.api.app.db.models import CartSession

    order_id = _order(backend, "Draft", ("f1", 1))
    cart_id = _edit(client, order_id)["cart_id"]

    with db_session() as db:
        row = db.get(CartSession, cart_id)
        row.saving = True
        row.saving_started_at = datetime.utcnow()
        db.commit()

    resp = client.post(f"/v1/carts/{cart_id}/save")
    assert resp.status_code == 409
    assert resp.json()["detail"] == "A save is already in progress for this order"


def test_concurrent_saves_create_new_lines_once(
    client: TestClient, backend: MockOrderService, monkeypatch: pytest.MonkeyPatch
) -> None:
    import services.api.app.routers.cart as cart_router

    order_id = _order(backend, "Confirmed", ("f1", 1))
    cart_id = _edit(client, order_id)["cart_id"]
    client.post(f"/v1/carts/{cart_id}/items", json={"item_id": "f2", "quantity": 1})

    real_load = cart_router.load_edit_session
    loading = threading.Event()
    release = threading.Event()

    def held_load(row, policy):
        loading.set()
        release.wait(timeout=5)
        return real_load(row, policy)

    creates: list[int] = []
    real_add = backend.add_order_items

    def counting_add(order_id: str, items):
        creates.append(len(items))
        return real_add(order_id, items)

    monkeypatch.setattr(cart_router, "load_edit_session", held_load)
    monkeypatch.setattr(backend, "add_order_items", counting_add)

    first: list[int] = []
    worker = threading.Thread(
        target=lambda: first.append(client.post(f"/v1/carts/{cart_id}/save").status_code)
    )
    worker.start()
    assert loading.wait(timeout=5)

    second = client.post(f"/v1/carts/{cart_id}/save")
    release.set()
    worker.join(timeout=10)

    assert second.status_code == 409
    assert first == [200]
    assert creates == [1]
    assert [i.item_id for i in backend.get_order(order_id).items].count("f2") == 1


def test_abandoned_save_claim_is_reclaimed(client: TestClient, backend: MockOrderService) -> None:
    from services.api.app.db.database import db_session
    from services.api.app.db.models import CartSession

    order_id = _order(backend, "Draft", ("f1", 1))
    cart_id = _edit(client, order_id)["cart_id"]

    with db_session() as db:
        row = db.get(CartSession, cart_id)
        row.saving = True
        row.saving_started_at = datetime.utcnow() - timedelta(hours=1)
        db.commit()

    resp = client.post(f"/v1/carts/{cart_id}/save")

    assert resp.status_code == 200
    assert resp.json()["cart"]["status"] == "CLOSED"


def test_order_with_repeated_items_opens_as_one_line(
    client: TestClient, backend: MockOrderService
) -> None:
    order_id = _order(backend, "Confirmed", ("f1", 2), ("f1", 1))
    cart = _edit(client, order_id)

    assert [(line["item_id"], line["quantity"]) for line in cart["lines"]] == [("f1", 3)]

    resp = client.post(f"/v1/carts/{cart['cart_id']}/save")

    assert resp.status_code == 200
    assert [(i.item_id, i.quantity) for i in backend.get_order(order_id).items] == [("f1", 3)]
    assert backend.balance("loc-1", "f1") == 7


def test_submit_is_not_allowed_on_edit_sessions(client: TestClient, backend: MockOrderService) -> None:
    cart_id = _edit(client, _order(backend, "Draft", ("f1", 1)))["cart_id"]
    assert client.post(f"/v1/carts/{cart_id}/submit", json={}).status_code == 409


def test_confirm_rejected_when_stock_dropped(client: TestClient, backend: MockOrderService) -> None:
    order_id = _order(backend, "Draft", ("f1", 5))
    backend.set_balance("loc-1", "f1", 3)

    resp = client.post(f"/v1/orders/{order_id}/status", json={"new_status": "Confirmed"})

    assert resp.status_code == 409
    detail = resp.json()["detail"]
    assert "Insufficient stock for f1" in detail["message"]
    assert detail["current_status"] == "Draft"
    assert backend.get_order(order_id).order_status == "Draft"
    assert backend.balance("loc-1", "f1") == 3


def test_confirm_and_revert(client: TestClient, backend: MockOrderService) -> None:
    order_id = _order(backend, "Draft", ("f1", 5))
    cart_id = _edit(client, order_id)["cart_id"]

    resp = client.post(f"/v1/orders/{order_id}/status", json={"new_status": "Confirmed"})
    assert resp.status_code == 200
    assert resp.json()["inventory_effect"] == "deduct"
    assert backend.balance("loc-1", "f1") == 5
    assert client.get(f"/v1/carts/{cart_id}").json()["order_status"] == "Confirmed"

    resp = client.post(f"/v1/orders/{order_id}/status", json={"new_status": "Draft"})
    assert resp.status_code == 200
    assert resp.json()["inventory_effect"] == "restore"
    assert backend.balance("loc-1", "f1") == 10


def test_status_changes_outside_the_engine_edges(
    client: TestClient, backend: MockOrderService
) -> None:
    order_id = _order(backend, "Confirmed", ("f1", 1))

    assert (
        client.post(f"/v1/orders/{order_id}/status", json={"new_status": "Confirmed"}).status_code
        == 409
    )
    assert (
        client.post(f"/v1/orders/{order_id}/status", json={"new_status": "Delivered"}).status_code
        == 409
    )
    assert client.post("/v1/orders/nope/status", json={"new_status": "Draft"}).status_code == 404
    assert client.post("/v1/orders/nope/edit").status_code == 404
