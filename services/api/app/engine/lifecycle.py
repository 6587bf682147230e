"""Order status transitions.

This engine only ever asks for Draft -> Confirmed or Confirmed -> Draft. The backend
performs the inventory side of each edge (deduct on confirm, restore on revert) and is
the authority on whether the change is allowed. Statuses past Confirmed belong to the
backend alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import structlog

from services.api.app.engine.errors import InvalidTransitionError, TransitionRejectedError
from services.api.app.services.order_service_base import (
    OrderNotFoundError,
    OrderService,
    OrderServiceError,
)

logger = structlog.get_logger()


class OrderStatus(str, Enum):
    DRAFT = "Draft"
    CREATED = "Created"
    CONFIRMED = "Confirmed"
    IN_PROGRESS = "In progress"
    IN_DELIVERY = "In delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"

    @classmethod
    def parse(cls, raw: str | OrderStatus) -> OrderStatus:
        if isinstance(raw, OrderStatus):
            return raw
        text = str(raw or "").strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        raise InvalidTransitionError(f"Unknown order status: {raw!r}")


class InventoryEffect(str, Enum):
    DEDUCT = "deduct"
    RESTORE = "restore"


_ENGINE_EDGES: dict[tuple[OrderStatus, OrderStatus], InventoryEffect] = {
    (OrderStatus.DRAFT, OrderStatus.CONFIRMED): InventoryEffect.DEDUCT,
    (OrderStatus.CONFIRMED, OrderStatus.DRAFT): InventoryEffect.RESTORE,
}

INITIAL_STATUSES = frozenset({OrderStatus.DRAFT, OrderStatus.CONFIRMED})


def check_transition(current: OrderStatus, target: OrderStatus) -> InventoryEffect:
    if current is target:
        raise InvalidTransitionError("New status is the same as current status")

    effect = _ENGINE_EDGES.get((current, target))
    if effect is None:
        raise InvalidTransitionError(
            f"Cannot change status from {current.value!r} to {target.value!r}"
        )
    return effect


def check_initial_status(status: OrderStatus) -> OrderStatus:
    if status not in INITIAL_STATUSES:
        raise InvalidTransitionError(
            f"New orders start as Draft or Confirmed, not {status.value!r}"
        )
    return status


def inventory_effect(current: OrderStatus, target: OrderStatus) -> InventoryEffect | None:
    return _ENGINE_EDGES.get((current, target))


@dataclass(frozen=True, slots=True)
class TransitionResult:
    previous_status: OrderStatus
    new_status: OrderStatus
    effect: InventoryEffect


class OrderLifecycle:
    def __init__(self, order_id: str, status: OrderStatus | str) -> None:
        self.order_id = order_id
        self.status = OrderStatus.parse(status)

    def transition_to(self, target: OrderStatus | str, service: OrderService) -> TransitionResult:
        """Ask the backend to move the order to `target`.

        The local status changes only after the backend accepts. A refusal raises
        TransitionRejectedError with the server's reason and leaves the status as it was.
        """

        target = OrderStatus.parse(target)
        effect = check_transition(self.status, target)

        logger.info(
            "order_transition_requested",
            order_id=self.order_id,
            current=self.status.value,
            target=target.value,
            effect=effect.value,
        )

        try:
            result = service.update_order_status(self.order_id, target.value)
        except OrderNotFoundError:
            raise
        except OrderServiceError as e:
            logger.info(
                "order_transition_rejected",
                order_id=self.order_id,
                current=self.status.value,
                target=target.value,
                reason=str(e),
            )
            raise TransitionRejectedError(
                str(e),
                current_status=self.status.value,
                requested_status=target.value,
            ) from e

        previous = self.status
        self.status = OrderStatus.parse(result.new_status)
        logger.info(
            "order_transition_applied",
            order_id=self.order_id,
            previous=result.previous_status,
            new=self.status.value,
        )
        return TransitionResult(previous_status=previous, new_status=self.status, effect=effect)
