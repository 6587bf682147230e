from __future__ import annotations

import pytest
from packages.shared.schemas.order_v1 import StatusChangeResultV1
from services.api.app.engine.errors import InvalidTransitionError, TransitionRejectedError
from services.api.app.engine.lifecycle import (
    InventoryEffect,
    OrderLifecycle,
    OrderStatus,
    check_initial_status,
    check_transition,
)
from services.api.app.services.order_service_base import (
    OrderNotFoundError,
    StockConflictError,
)


class _StatusService:
    def __init__(self, exc: Exception | None = None) -> None:
        self._exc = exc
        self.calls: list[tuple[str, str]] = []

    def update_order_status(self, order_id: str, new_status: str) -> StatusChangeResultV1:
        self.calls.append((order_id, new_status))
        if self._exc is not None:
            raise self._exc
        return StatusChangeResultV1(previous_status="Draft", new_status=new_status)


def test_engine_edges_and_their_inventory_effect() -> None:
    assert check_transition(OrderStatus.DRAFT, OrderStatus.CONFIRMED) is InventoryEffect.DEDUCT
    assert check_transition(OrderStatus.CONFIRMED, OrderStatus.DRAFT) is InventoryEffect.RESTORE


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (OrderStatus.DRAFT, OrderStatus.DRAFT),
        (OrderStatus.CONFIRMED, OrderStatus.DELIVERED),
        (OrderStatus.IN_PROGRESS, OrderStatus.DRAFT),
    ],
)
def test_other_transitions_are_refused_locally(current: OrderStatus, target: OrderStatus) -> None:
    with pytest.raises(InvalidTransitionError):
        check_transition(current, target)


def test_new_orders_start_as_draft_or_confirmed() -> None:
    assert check_initial_status(OrderStatus.CONFIRMED) is OrderStatus.CONFIRMED
    with pytest.raises(InvalidTransitionError):
        check_initial_status(OrderStatus.IN_DELIVERY)


def test_status_parse_is_case_insensitive() -> None:
    assert OrderStatus.parse("in progress") is OrderStatus.IN_PROGRESS
    with pytest.raises(InvalidTransitionError):
        OrderStatus.parse("Shipped")


def test_transition_updates_status_after_backend_accepts() -> None:
    service = _StatusService()
    lifecycle = OrderLifecycle("ord-1", "Draft")

    result = lifecycle.transition_to(OrderStatus.CONFIRMED, service)

    assert service.calls == [("ord-1", "Confirmed")]
    assert lifecycle.status is OrderStatus.CONFIRMED
    assert result.effect is InventoryEffect.DEDUCT


def test_rejected_transition_keeps_status_and_reason() -> None:
    service = _StatusService(StockConflictError("Insufficient stock for f1: need 3, have 1"))
    lifecycle = OrderLifecycle("ord-1", OrderStatus.DRAFT)

    with pytest.raises(TransitionRejectedError) as exc:
        lifecycle.transition_to("Confirmed", service)

    assert exc.value.reason == "Insufficient stock for f1: need 3, have 1"
    assert exc.value.current_status == "Draft"
    assert lifecycle.status is OrderStatus.DRAFT


def test_missing_order_is_not_a_rejection() -> None:
    lifecycle = OrderLifecycle("ord-x", OrderStatus.CONFIRMED)
    with pytest.raises(OrderNotFoundError):
        lifecycle.transition_to("Draft", _StatusService(OrderNotFoundError()))
