"""Shared event schema (v1).

The backend stores an append-only event log per cart session and order. Clients can
consume these events to render an audit trail of how an order was composed.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventTypeV1(str, Enum):
    CART_CREATED = "CART_CREATED"
    CART_LINE_ADDED = "CART_LINE_ADDED"
    CART_LINE_REMOVED = "CART_LINE_REMOVED"
    CART_ACTIONS_APPLIED = "CART_ACTIONS_APPLIED"
    ORDER_SUBMITTED = "ORDER_SUBMITTED"
    EDIT_SESSION_STARTED = "EDIT_SESSION_STARTED"
    ORDER_SAVED = "ORDER_SAVED"
    ORDER_SAVE_FAILED = "ORDER_SAVE_FAILED"
    ORDER_STATUS_CHANGED = "ORDER_STATUS_CHANGED"
    ORDER_STATUS_REJECTED = "ORDER_STATUS_REJECTED"


class EventV1(BaseModel):
    id: str
    session_id: str | None = None
    order_id: str | None = None

    event_type: EventTypeV1
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str
