"""Vendor fulfillment endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.identity import Identity
from app.models.order import Order
from app.schemas.order import OrderRead, OrderStatusUpdate
from app.security import require_vendor_staff
from app.services import orders as orders_service

router = APIRouter(prefix="/vendor", tags=["vendor"])


@router.post("/orders/{order_id}/status", response_model=OrderRead)
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
    staff: Identity = Depends(require_vendor_staff),
) -> Order:
    """Advance one of the vendor's orders through fulfillment."""

    return orders_service.advance_order_status(
        db, staff, order_id, payload.status, note=payload.note
    )
