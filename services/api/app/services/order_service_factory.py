from __future__ import annotations

import os

from services.api.app.services.order_service_base import OrderService
from services.api.app.services.order_service_mock import order_backend


def get_order_service() -> OrderService:
    """Select the order service based on env vars.

    Defaults to the shared in-memory backend so tests and local dev are deterministic
    unless explicitly configured otherwise.
    """

    mode = os.getenv("FLORIST_ORDER_SERVICE", "mock").strip().lower()

    if mode == "mock":
        return order_backend

    if mode == "http":
        from services.api.app.services.order_service_http import HttpOrderService

        return HttpOrderService.from_env()

    raise ValueError(f"Unknown FLORIST_ORDER_SERVICE={mode!r}. Expected mock or http.")
