"""Order reads for buyers and fulfillment actions for vendor staff."""
from __future__ import annotations

import logging
from typing import Any

import stripe
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.models.identity import Identity
from app.models.order import Order, OrderStatus
from app.services.order_state import FULFILLMENT_TARGETS, transition
from app.services.psp_stripe import StripeClient
from app.utils.audit import actor_for_identity, log_audit
from app.utils.errors import (
    Forbidden,
    GatewayUnavailable,
    IllegalTransition,
    OrderNotFound,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)


def list_orders_for_buyer(
    db: Session,
    buyer: Identity,
    *,
    status: OrderStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Order]:
    stmt = (
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.buyer_id == buyer.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(offset)
        .limit(limit)
    )
    if status is not None:
        stmt = stmt.where(Order.status == status)
    return list(db.scalars(stmt))


def _get_by_order_id(db: Session, order_id: str, *, for_update: bool = False) -> Order | None:
    stmt = select(Order).options(selectinload(Order.items)).where(Order.order_id == order_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return db.scalars(stmt).first()


def get_order_for_buyer(db: Session, buyer: Identity, order_id: str) -> Order:
    """Return the buyer's order; other buyers' orders are reported as missing."""

    order = _get_by_order_id(db, order_id)
    if order is None or order.buyer_id != buyer.id:
        raise OrderNotFound(details={"order_id": order_id})
    return order


def advance_order_status(
    db: Session,
    staff: Identity,
    order_id: str,
    target: OrderStatus,
    *,
    note: str | None = None,
) -> Order:
    """Move a vendor's order along the fulfillment path.

    Settlement states (``paid``, ``failed``) are reserved for the webhook
    reconciler and rejected here.
    """

    if staff.vendor_id is None:
        raise Forbidden("Vendor staff access required.")
    if target not in FULFILLMENT_TARGETS:
        raise IllegalTransition(
            "Status is set by the payment gateway only.",
            details={"to": target.value},
        )

    order = _get_by_order_id(db, order_id, for_update=True)
    if order is None or order.vendor_id != staff.vendor_id:
        raise OrderNotFound(details={"order_id": order_id})

    previous = order.status
    order.status = transition(previous, target)
    log_audit(
        db,
        actor=actor_for_identity(staff),
        action="ORDER_STATUS_CHANGED",
        entity="Order",
        entity_id=order.id,
        data={
            "order_id": order.order_id,
            "from": previous.value,
            "to": order.status.value,
            "note": note,
        },
    )
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to persist fulfillment update", extra={"order_id": order_id})
        raise StoreUnavailable() from exc
    db.refresh(order)
    logger.info(
        "Order status changed by vendor",
        extra={"order_id": order.order_id, "from": previous.value, "to": order.status.value},
    )
    return order


def checkout_session_status(db: Session, buyer: Identity, session_id: str) -> dict[str, Any]:
    """Report the gateway payment status next to the local order statuses.

    Read only: local orders only change through webhook deliveries.
    """

    stmt = (
        select(Order)
        .where(Order.gateway_session_id == session_id, Order.buyer_id == buyer.id)
        .order_by(Order.id)
    )
    orders = list(db.scalars(stmt))
    if not orders:
        raise OrderNotFound("No orders for this checkout session.", details={"session_id": session_id})

    try:
        gateway = StripeClient.from_env().retrieve_checkout_session(session_id)
    except (stripe.StripeError, RuntimeError) as exc:
        logger.warning("Could not retrieve checkout session", extra={"session_id": session_id})
        raise GatewayUnavailable("Payment status is temporarily unavailable.") from exc

    return {
        "session_id": session_id,
        "gateway_status": gateway.get("status"),
        "payment_status": gateway.get("payment_status"),
        "amount_total": gateway.get("amount_total"),
        "currency": gateway.get("currency"),
        "orders": [
            {"order_id": order.order_id, "status": order.status.value, "total_amount": order.total_amount}
            for order in orders
        ],
    }


__all__ = [
    "advance_order_status",
    "checkout_session_status",
    "get_order_for_buyer",
    "list_orders_for_buyer",
]
