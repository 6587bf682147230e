from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from services.api.app.engine.cart import CartStore
from services.api.app.engine.lifecycle import OrderStatus, check_initial_status
from services.api.app.engine.order_form import OrderFields, build_create_payload, validate_order
from services.api.app.services.order_service_base import (
    Attachment,
    OrderService,
    OrderServiceError,
)

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class SubmittedOrder:
    order_id: str
    order_status: OrderStatus
    warnings: list[str] = field(default_factory=list)


def submit_new_order(
    service: OrderService,
    store: CartStore,
    fields: OrderFields,
    *,
    order_status: OrderStatus | str,
    location_id: str,
    attachments: Sequence[Attachment] = (),
) -> SubmittedOrder:
    """Create an order in one atomic call, then upload attachments best-effort.

    Pricing and, for a Confirmed order, the stock deduction travel in the same request.
    A failed attachment upload is reported as a warning and never undoes the order.
    """

    status = check_initial_status(OrderStatus.parse(order_status))
    validate_order(fields, store, store.guard)

    payload = build_create_payload(
        fields, store, order_status=status.value, location_id=location_id
    )
    logger.info(
        "order_create_requested",
        location_id=location_id,
        status=status.value,
        items=len(payload.items),
        subtotal=payload.subtotal,
    )
    created = service.create_order(payload)
    logger.info("order_created", order_id=created.id, status=created.order_status)

    warnings: list[str] = []
    for attachment in attachments:
        try:
            service.upload_attachment(created.id, attachment)
        except OrderServiceError as e:
            logger.warning(
                "attachment_upload_failed",
                order_id=created.id,
                filename=attachment.filename,
                reason=str(e),
            )
            warnings.append(f"Failed to upload attachment {attachment.filename}: {e}")

    return SubmittedOrder(
        order_id=created.id,
        order_status=OrderStatus.parse(created.order_status or status.value),
        warnings=warnings,
    )
