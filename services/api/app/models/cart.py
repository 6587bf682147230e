from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class CartCreateRequest(BaseModel):
    location_id: str = Field(..., min_length=1)


class AddItemRequest(BaseModel):
    item_id: str = Field(..., min_length=1)
    kind: Literal["item", "bouquet"] = "item"
    quantity: int = Field(1, ge=0)


class SetQuantityAction(BaseModel):
    type: Literal["set_quantity"]
    item_id: str
    quantity: int = Field(..., ge=1)


class AdjustQuantityAction(BaseModel):
    type: Literal["adjust_quantity"]
    item_id: str
    delta: int


class SetMarkupAction(BaseModel):
    type: Literal["set_markup"]
    item_id: str
    markup_percentage: int | None = None


class SetPriceAction(BaseModel):
    type: Literal["set_price"]
    item_id: str
    actual_price: float


class RemoveItemAction(BaseModel):
    type: Literal["remove"]
    item_id: str


class SetDiscountAction(BaseModel):
    type: Literal["set_discount"]
    discount_percentage: float


class SetDeliveryPriceAction(BaseModel):
    type: Literal["set_delivery_price"]
    delivery_price: float


CartActionIn = Annotated[
    Union[
        SetQuantityAction,
        AdjustQuantityAction,
        SetMarkupAction,
        SetPriceAction,
        RemoveItemAction,
        SetDiscountAction,
        SetDeliveryPriceAction,
    ],
    Field(discriminator="type"),
]


class CartActionsRequest(BaseModel):
    actions: list[CartActionIn] = Field(..., min_length=1)


class OrderDetailsPatch(BaseModel):
    client_id: str | None = None
    delivery_type: Literal["Pickup", "Delivery"] | None = None
    delivery_address: str | None = None
    delivery_date_time: str | None = None
    notes: str | None = None
    payment_status: Literal["Pending", "Paid", "Refunded"] | None = None
    payment_method: Literal["Cash", "Card", "Bank Transfer", "Other"] | None = None


class AttachmentIn(BaseModel):
    filename: str = Field(..., min_length=1)
    content_base64: str
    content_type: str = "application/octet-stream"


class SubmitRequest(BaseModel):
    order_status: Literal["Draft", "Confirmed"] = "Draft"
    attachments: list[AttachmentIn] = Field(default_factory=list)


class StatusChangeRequest(BaseModel):
    new_status: str = Field(..., min_length=1)


class BouquetComponentOut(BaseModel):
    name: str
    color: str | None = None
    quantity: int


class LineOut(BaseModel):
    item_id: str
    item_type: str
    name: str
    quantity: int
    standard_price: float
    actual_price: float
    markup_percentage: int | None = None
    line_total: float
    color: str | None = None
    picture_ref: str | None = None
    bouquet_composition: list[BouquetComponentOut] = Field(default_factory=list)
    persisted_id: str | None = None


class TotalsOut(BaseModel):
    subtotal: float
    discount_percentage: float
    discount_amount: float
    delivery_price: float
    total: float


class OrderDetailsOut(BaseModel):
    client_id: str | None = None
    delivery_type: str
    delivery_address: str = ""
    delivery_date_time: str | None = None
    notes: str = ""
    payment_status: str
    payment_method: str | None = None


class CartOut(BaseModel):
    cart_id: str
    kind: str
    status: str
    location_id: str
    order_id: str | None = None
    order_status: str
    lines: list[LineOut]
    totals: TotalsOut
    approximate_subtotal: float
    details: OrderDetailsOut
    stock: dict[str, int] = Field(default_factory=dict)


class SubmitResponse(BaseModel):
    order_id: str
    order_status: str
    warnings: list[str] = Field(default_factory=list)


class SaveResponse(BaseModel):
    order_id: str
    order_status: str
    total_price: float | None = None
    cart: CartOut


class StatusChangeResponse(BaseModel):
    order_id: str
    previous_status: str
    new_status: str
    inventory_effect: str

