"""Wire schema (v1) for the external order service.

These shapes cross the boundary to the service that owns inventory balances, bouquet
instances and persisted orders. Field names match that service's JSON.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CatalogItemV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    color: str | None = None
    category: str | None = None
    standard_price: float = Field(0.0, ge=0)
    current_balance: int = 0
    picture: str | None = None


class BouquetComponentV1(BaseModel):
    name: str
    color: str | None = None
    quantity: int = Field(..., ge=0)


class BouquetDetailsV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    transaction_id: str
    created_date: str | None = None
    description: str | None = None
    composition: list[BouquetComponentV1] = Field(default_factory=list)
    total_flowers_used: int = 0


class OrderItemV1(BaseModel):
    item_id: str
    item_type: str
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)


class OrderItemUpdateV1(BaseModel):
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)


class PersistedOrderItemV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    item_id: str
    item_type: str
    item_name: str = ""
    quantity: int
    unit_price: float
    standard_unit_price: float | None = None
    subtotal: float | None = None
    color: str | None = None
    picture: str | None = None
    bouquet_composition: list[BouquetComponentV1] = Field(default_factory=list)


class PreviousItemV1(BaseModel):
    item_id: str
    item_name: str = ""
    item_type: str
    quantity: int
    unit_price: float
    subtotal: float


class OrderFieldsV1(BaseModel):
    client_id: str | None = None
    delivery_type: str = "Pickup"
    delivery_address: str | None = None
    delivery_date_time: str | None = None
    notes: str | None = None
    payment_status: str = "Pending"
    payment_method: str | None = None


class OrderCreateV1(OrderFieldsV1):
    shop_location_id: str
    order_status: str
    subtotal: float
    discount_percentage: float = Field(0.0, ge=0, le=100)
    discount_amount: float = Field(0.0, ge=0)
    delivery_price: float = Field(0.0, ge=0)
    items: list[OrderItemV1] = Field(..., min_length=1)


class OrderUpdateV1(OrderFieldsV1):
    discount_percentage: float = Field(0.0, ge=0, le=100)
    discount_amount: float = Field(0.0, ge=0)
    delivery_price: float = Field(0.0, ge=0)
    subtotal: float
    total_price: float
    previous_items: list[PreviousItemV1] = Field(default_factory=list)


class OrderV1(OrderFieldsV1):
    model_config = ConfigDict(extra="ignore")

    id: str
    shop_location_id: str
    order_status: str
    discount_percentage: float = 0.0
    delivery_price: float = 0.0
    subtotal: float | None = None
    total_price: float | None = None
    items: list[PersistedOrderItemV1] = Field(default_factory=list)


class StatusChangeV1(BaseModel):
    new_status: str


class StatusChangeResultV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    previous_status: str
    new_status: str


class CreatedOrderV1(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    order_status: str
    fields: dict[str, Any] = Field(default_factory=dict)
