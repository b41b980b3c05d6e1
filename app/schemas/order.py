"""Schemas for order projections and fulfillment updates."""
from datetime import datetime

from pydantic import ConfigDict, Field

from app.models.order import OrderStatus
from app.schemas.base import ApiModel


class OrderItemRead(ApiModel):
    product_id: int
    product_name: str
    quantity: int
    unit_amount: int
    line_amount: int

    model_config = ConfigDict(from_attributes=True)


class OrderRead(ApiModel):
    order_id: str
    vendor_id: int
    status: OrderStatus
    currency: str
    total_amount: int
    gateway_session_id: str | None
    consultation_id: int | None
    shipping_snapshot: dict | None
    paid_at: datetime | None
    created_at: datetime
    items: list[OrderItemRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class OrderStatusUpdate(ApiModel):
    status: OrderStatus
    note: str | None = Field(default=None, max_length=500)
