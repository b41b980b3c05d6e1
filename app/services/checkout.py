"""Checkout orchestration: reserve vendor orders, then open a gateway session.

Order rows are written before control leaves the system so every monetary
flow has a durable internal record. The gateway call and the session-id write
cannot share a database transaction, so failures after the rows exist are
undone with a compensating delete scoped by the attempt's correlation id.
Rows whose compensation also fails stay ``pending`` and are cancelled by the
sweep in ``app.services.cron``.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable
from uuid import uuid4

import stripe
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.consultation import Consultation
from app.models.identity import Identity
from app.models.order import Order, OrderItem, OrderStatus
from app.services.catalog import PricedLine, group_by_vendor, price_line_items
from app.services.psp_stripe import StripeClient, build_line_item
from app.utils.audit import log_audit
from app.utils.errors import (
    GatewayUnavailable,
    InvalidLineItem,
    StoreUnavailable,
    StoreWriteFailed,
    Unauthenticated,
)
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    redirect_url: str
    session_id: str
    checkout_attempt_id: str
    order_ids: list[str] = field(default_factory=list)


def generate_order_id(now: datetime | None = None) -> str:
    """Human-shareable merchant order number, e.g. ``ORD20261019153000A1B2C3``."""

    now = now or utcnow()
    return f"ORD{now:%Y%m%d%H%M%S}{secrets.token_hex(3).upper()}"


def _check_consultation(db: Session, buyer: Identity, consultation_id: int | None) -> None:
    if consultation_id is None:
        return
    consultation = db.get(Consultation, consultation_id)
    if consultation is None or consultation.identity_id != buyer.id:
        raise InvalidLineItem(
            "Consultation not found for this buyer.",
            details={"consultation_id": consultation_id},
        )


def _reserve_orders(
    db: Session,
    *,
    buyer: Identity,
    lines: list[PricedLine],
    attempt_id: str,
    currency: str,
    consultation_id: int | None,
) -> list[Order]:
    orders: list[Order] = []
    for vendor_id, vendor_lines in group_by_vendor(lines).items():
        order = Order(
            order_id=generate_order_id(),
            checkout_attempt_id=attempt_id,
            buyer_id=buyer.id,
            vendor_id=vendor_id,
            consultation_id=consultation_id,
            currency=currency,
            total_amount=sum(line.line_amount for line in vendor_lines),
            status=OrderStatus.PENDING,
        )
        order.items = [
            OrderItem(
                product_id=line.product_id,
                product_name=line.name,
                quantity=line.quantity,
                unit_amount=line.unit_amount,
                line_amount=line.line_amount,
            )
            for line in vendor_lines
        ]
        db.add(order)
        orders.append(order)

    try:
        db.flush()
        log_audit(
            db,
            actor=f"identity:{buyer.id}",
            action="CHECKOUT_RESERVED",
            entity="Order",
            entity_id=orders[0].id,
            data={
                "checkout_attempt_id": attempt_id,
                "order_ids": [order.order_id for order in orders],
            },
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to reserve pending orders", extra={"checkout_attempt_id": attempt_id})
        raise StoreWriteFailed("Checkout failed, please retry.") from exc
    return orders


def compensate_attempt(db: Session, attempt_id: str) -> int:
    """Delete the still-pending rows of one checkout attempt.

    Returns the number of orders removed. A failure here is logged and the rows
    are left for the pending-order sweep.
    """

    try:
        db.rollback()
        attempt_orders = select(Order.id).where(
            Order.checkout_attempt_id == attempt_id,
            Order.status == OrderStatus.PENDING,
        )
        db.execute(
            delete(OrderItem)
            .where(OrderItem.order_id.in_(attempt_orders))
            .execution_options(synchronize_session=False)
        )
        removed = db.execute(
            delete(Order)
            .where(
                Order.checkout_attempt_id == attempt_id,
                Order.status == OrderStatus.PENDING,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error(
            "Compensating delete failed; pending rows left for sweep",
            exc_info=True,
            extra={"checkout_attempt_id": attempt_id},
        )
        return 0
    logger.info(
        "Checkout attempt rolled back",
        extra={"checkout_attempt_id": attempt_id, "orders_removed": removed},
    )
    return removed or 0


def create_checkout(
    db: Session,
    *,
    buyer: Identity,
    items: Iterable[tuple[int, int]],
    consultation_id: int | None = None,
) -> CheckoutResult:
    """Reserve per-vendor orders and open a hosted checkout session."""

    settings = get_settings()
    if not buyer.is_active:
        raise Unauthenticated("Identity is no longer active.", details={"reason": "IDENTITY_INACTIVE"})

    currency = settings.CHECKOUT_CURRENCY
    lines = price_line_items(db, items, currency=currency)
    _check_consultation(db, buyer, consultation_id)

    try:
        client = StripeClient(settings)
    except RuntimeError as exc:
        logger.error("Stripe is not configured for checkout", exc_info=True)
        raise GatewayUnavailable() from exc

    attempt_id = uuid4().hex
    orders = _reserve_orders(
        db,
        buyer=buyer,
        lines=lines,
        attempt_id=attempt_id,
        currency=currency,
        consultation_id=consultation_id,
    )
    order_ids = [order.order_id for order in orders]
    metadata = {
        "checkout_attempt_id": attempt_id,
        "buyer_id": str(buyer.id),
        "order_ids": ",".join(order_ids),
    }
    if consultation_id is not None:
        metadata["consultation_id"] = str(consultation_id)

    try:
        session = client.create_checkout_session(
            line_items=[
                build_line_item(
                    name=line.name,
                    unit_amount=line.unit_amount,
                    quantity=line.quantity,
                    currency=currency,
                    description=line.description,
                    image_url=line.image_url,
                )
                for line in lines
            ],
            metadata=metadata,
            client_reference_id=str(buyer.id),
            expires_at=utcnow() + timedelta(minutes=settings.CHECKOUT_SESSION_TTL_MINUTES),
            customer_email=buyer.email,
            idempotency_key=f"checkout:{attempt_id}",
        )
    except (stripe.StripeError, RuntimeError) as exc:
        logger.warning(
            "Gateway session creation failed",
            extra={"checkout_attempt_id": attempt_id, "error": str(exc)},
        )
        compensate_attempt(db, attempt_id)
        raise GatewayUnavailable() from exc

    try:
        result = db.execute(
            update(Order)
            .where(
                Order.checkout_attempt_id == attempt_id,
                Order.status == OrderStatus.PENDING,
            )
            .values(gateway_session_id=session.id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(orders):
            raise StoreUnavailable("Reserved orders changed before the session id was saved.")
        db.commit()
    except (SQLAlchemyError, StoreUnavailable) as exc:
        logger.error(
            "Persisting gateway session id failed",
            exc_info=True,
            extra={"checkout_attempt_id": attempt_id, "session_id": session.id},
        )
        compensate_attempt(db, attempt_id)
        _expire_gateway_session(client, session.id)
        raise StoreWriteFailed("Checkout failed, please retry.") from exc

    logger.info(
        "Checkout session created",
        extra={
            "checkout_attempt_id": attempt_id,
            "session_id": session.id,
            "order_ids": order_ids,
        },
    )
    return CheckoutResult(
        redirect_url=session.url,
        session_id=session.id,
        checkout_attempt_id=attempt_id,
        order_ids=order_ids,
    )


def _expire_gateway_session(client: StripeClient, session_id: str) -> None:
    """Close a session whose orders were rolled back so it cannot be paid."""

    try:
        client.expire_checkout_session(session_id)
    except (stripe.StripeError, RuntimeError):
        logger.warning("Could not expire orphaned checkout session", extra={"session_id": session_id})


__all__ = ["CheckoutResult", "create_checkout", "compensate_attempt", "generate_order_id"]
