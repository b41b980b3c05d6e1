"""Schemas for checkout requests and responses."""
from pydantic import Field

from app.schemas.base import ApiModel


class CheckoutLineItem(ApiModel):
    product_id: int
    # Non-positive quantities are rejected by the catalog as INVALID_LINE_ITEM.
    quantity: int


class CheckoutCreate(ApiModel):
    items: list[CheckoutLineItem] = Field(default_factory=list)
    consultation_id: int | None = None


class CheckoutRead(ApiModel):
    redirect_url: str
    session_id: str
    order_ids: list[str]


class SessionOrderStatus(ApiModel):
    order_id: str
    status: str
    total_amount: int


class CheckoutSessionStatusRead(ApiModel):
    session_id: str
    gateway_status: str | None
    payment_status: str | None
    amount_total: int | None
    currency: str | None
    orders: list[SessionOrderStatus]
