"""Checkout endpoints."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.identity import Identity
from app.schemas.checkout import CheckoutCreate, CheckoutRead, CheckoutSessionStatusRead
from app.security import require_identity
from app.services import checkout as checkout_service
from app.services import orders as orders_service

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("", response_model=CheckoutRead, status_code=status.HTTP_201_CREATED)
def create_checkout(
    payload: CheckoutCreate,
    db: Session = Depends(get_db),
    buyer: Identity = Depends(require_identity),
) -> CheckoutRead:
    """Reserve per-vendor orders and return the hosted payment page URL."""

    result = checkout_service.create_checkout(
        db,
        buyer=buyer,
        items=[(item.product_id, item.quantity) for item in payload.items],
        consultation_id=payload.consultation_id,
    )
    return CheckoutRead(
        redirect_url=result.redirect_url,
        session_id=result.session_id,
        order_ids=result.order_ids,
    )


@router.get("/sessions/{session_id}", response_model=CheckoutSessionStatusRead)
def get_checkout_session_status(
    session_id: str,
    db: Session = Depends(get_db),
    buyer: Identity = Depends(require_identity),
) -> CheckoutSessionStatusRead:
    return CheckoutSessionStatusRead.model_validate(
        orders_service.checkout_session_status(db, buyer, session_id)
    )
