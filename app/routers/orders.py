"""Buyer order endpoints."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.identity import Identity
from app.models.order import Order, OrderStatus
from app.schemas.order import OrderRead
from app.security import require_identity
from app.services import orders as orders_service

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=list[OrderRead])
def list_orders(
    status: OrderStatus | None = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    buyer: Identity = Depends(require_identity),
) -> list[Order]:
    return orders_service.list_orders_for_buyer(db, buyer, status=status, limit=limit, offset=offset)


@router.get("/{order_id}", response_model=OrderRead)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    buyer: Identity = Depends(require_identity),
) -> Order:
    return orders_service.get_order_for_buyer(db, buyer, order_id)
