"""Reconcile signed Stripe webhook deliveries against the order store.

Deliveries are at-least-once and arrive in any order. Every verified event
passes the idempotency gate before it may touch an order, and the order
mutations commit together with the ledger's ``success`` row.
"""
from __future__ import annotations

import logging
from typing import Any

import stripe
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.models.identity import Identity
from app.models.order import Order, OrderStatus
from app.services import idempotency
from app.services.gateway_events import (
    CheckoutCompleted,
    CheckoutExpired,
    GatewayEvent,
    PaymentFailed,
    Unhandled,
    parse_event,
)
from app.services.identities import backfill_shipping_profile
from app.services.idempotency import ClaimOutcome
from app.services.order_state import transition
from app.services.psp_stripe import StripeClient
from app.utils.audit import log_audit
from app.utils.errors import (
    WEBHOOK_ANOMALIES,
    AmountMismatch,
    DomainError,
    GatewayNotConfigured,
    InvalidSignature,
    StoreUnavailable,
    UnknownOrderReference,
    WebhookInProgress,
)
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

AUDIT_ACTOR = "stripe"


def _verify(settings: Settings, raw_body: bytes, sig_header: str | None) -> dict[str, Any]:
    if not sig_header:
        raise InvalidSignature("Stripe-Signature header is required.")
    try:
        client = StripeClient(settings)
        return client.verify_webhook_payload(raw_body, sig_header)
    except RuntimeError as exc:
        logger.error("Stripe webhook configuration error", exc_info=True)
        raise GatewayNotConfigured(str(exc)) from exc
    except stripe.SignatureVerificationError as exc:
        logger.warning("Stripe signature verification failed")
        raise InvalidSignature() from exc
    except ValueError as exc:
        # UnicodeDecodeError and JSONDecodeError are both ValueErrors.
        logger.warning("Verified webhook body is not a JSON object")
        raise InvalidSignature("Webhook payload could not be decoded.") from exc


def _locked(stmt):
    # Row locks where the dialect has them; always re-read the current status.
    return stmt.with_for_update().execution_options(populate_existing=True)


def _load_orders(db: Session, session_id: str, attempt_id: str | None) -> list[Order]:
    stmt = select(Order).where(Order.gateway_session_id == session_id).order_by(Order.id)
    orders = list(db.scalars(_locked(stmt)))
    if not orders and attempt_id:
        # The event can overtake the session-id write of the checkout request.
        stmt = (
            select(Order)
            .where(Order.checkout_attempt_id == attempt_id, Order.gateway_session_id.is_(None))
            .order_by(Order.id)
        )
        orders = list(db.scalars(_locked(stmt)))
    if not orders:
        raise UnknownOrderReference(details={"session_id": session_id})
    return orders


def _apply_completed(db: Session, event: CheckoutCompleted) -> dict[str, Any]:
    orders = _load_orders(db, event.session_id, event.metadata.get("checkout_attempt_id"))

    expected = sum(order.total_amount for order in orders)
    currencies = {order.currency.lower() for order in orders}
    if event.amount_total != expected or (event.currency and {event.currency.lower()} != currencies):
        raise AmountMismatch(
            details={
                "session_id": event.session_id,
                "expected": expected,
                "received": event.amount_total,
                "currency": event.currency,
            }
        )

    # Validate every row before mutating any of them.
    targets = [transition(order.status, OrderStatus.PAID) for order in orders]

    paid_at = event.paid_at or utcnow()
    shipping = {key: value for key, value in event.shipping.items() if value}
    for order, target in zip(orders, targets):
        order.status = target
        order.gateway_session_id = event.session_id
        order.gateway_payment_ref = event.payment_ref
        order.shipping_snapshot = shipping or None
        order.customer_email = event.customer_email
        order.paid_at = paid_at
        log_audit(
            db,
            actor=AUDIT_ACTOR,
            action="ORDER_PAID",
            entity="Order",
            entity_id=order.id,
            data={
                "order_id": order.order_id,
                "event_id": event.event_id,
                "payment_ref": event.payment_ref,
                "total_amount": order.total_amount,
            },
        )

    profile_updates: list[str] = []
    buyer = db.get(Identity, orders[0].buyer_id)
    if buyer is not None and buyer.is_active and not buyer.is_guest:
        profile_updates = backfill_shipping_profile(buyer, event.shipping)
        if event.customer_email and not buyer.email:
            buyer.email = event.customer_email
            profile_updates.append("email")

    db.flush()
    logger.info(
        "Orders marked paid",
        extra={
            "event_id": event.event_id,
            "session_id": event.session_id,
            "order_ids": [order.order_id for order in orders],
        },
    )
    return {
        "outcome": OrderStatus.PAID.value,
        "session_id": event.session_id,
        "order_ids": [order.order_id for order in orders],
        "amount_total": expected,
        "profile_updated": bool(profile_updates),
    }


def _apply_terminal(
    db: Session,
    *,
    event_id: str,
    session_id: str,
    target: OrderStatus,
    action: str,
) -> dict[str, Any]:
    orders = _load_orders(db, session_id, None)
    targets = [transition(order.status, target) for order in orders]
    for order, new_status in zip(orders, targets):
        order.status = new_status
        log_audit(
            db,
            actor=AUDIT_ACTOR,
            action=action,
            entity="Order",
            entity_id=order.id,
            data={"order_id": order.order_id, "event_id": event_id},
        )
    db.flush()
    logger.info(
        "Orders moved by gateway event",
        extra={
            "event_id": event_id,
            "session_id": session_id,
            "status": target.value,
            "order_ids": [order.order_id for order in orders],
        },
    )
    return {
        "outcome": target.value,
        "session_id": session_id,
        "order_ids": [order.order_id for order in orders],
    }


def dispatch_event(db: Session, event: GatewayEvent) -> dict[str, Any]:
    """Apply a parsed event and return the ledger snapshot. Does not commit."""

    if isinstance(event, CheckoutCompleted):
        return _apply_completed(db, event)
    if isinstance(event, PaymentFailed):
        return _apply_terminal(
            db,
            event_id=event.event_id,
            session_id=event.session_id,
            target=OrderStatus.FAILED,
            action="ORDER_PAYMENT_FAILED",
        )
    if isinstance(event, CheckoutExpired):
        return _apply_terminal(
            db,
            event_id=event.event_id,
            session_id=event.session_id,
            target=OrderStatus.CANCELLED,
            action="ORDER_CHECKOUT_EXPIRED",
        )
    logger.info(
        "Unhandled Stripe event type",
        extra={"event_id": event.event_id, "event_type": event.event_type, "reason": event.reason},
    )
    return {"ignored": True, "reason": event.reason}


def _ack(event_id: str, status: str, **extra: Any) -> dict[str, Any]:
    return {"received": True, "event_id": event_id, "status": status, **extra}


def _record_anomaly(db: Session, event_id: str, attempts: int, exc: DomainError) -> None:
    try:
        idempotency.mark_failed(
            db,
            event_id,
            attempts=attempts,
            error_code=exc.code,
            error_message=exc.message,
            snapshot={"details": exc.details} if exc.details else None,
        )
    except SQLAlchemyError as store_exc:
        db.rollback()
        logger.error("Could not record webhook anomaly", exc_info=True, extra={"event_id": event_id})
        raise StoreUnavailable() from store_exc


def _record_store_failure(db: Session, event_id: str, attempts: int, exc: SQLAlchemyError) -> None:
    try:
        idempotency.mark_failed(
            db,
            event_id,
            attempts=attempts,
            error_code=StoreUnavailable.code,
            error_message=exc.__class__.__name__,
        )
    except SQLAlchemyError:
        # The processing claim stays until its lease runs out and is then re-claimable.
        db.rollback()
        logger.error("Could not mark webhook event failed", exc_info=True, extra={"event_id": event_id})


def reconcile_gateway_event(db: Session, raw_body: bytes, sig_header: str | None) -> dict[str, Any]:
    """Verify, gate and apply one webhook delivery.

    Returns the acknowledgement body. Raises ``InvalidSignature`` (400),
    ``WebhookInProgress`` (409) or ``StoreUnavailable`` (503); data anomalies
    are recorded on the ledger and acknowledged.
    """

    settings = get_settings()
    payload = _verify(settings, raw_body, sig_header)

    event_id = payload.get("id")
    event_type = payload.get("type")
    if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str):
        raise InvalidSignature("Webhook payload is missing its event id or type.")

    logger.info("Stripe webhook received", extra={"event_id": event_id, "event_type": event_type})

    try:
        claim = idempotency.claim(
            db,
            event_id,
            event_type,
            lease_seconds=settings.WEBHOOK_PROCESSING_LEASE_SECONDS,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Idempotency claim failed", exc_info=True, extra={"event_id": event_id})
        raise StoreUnavailable() from exc

    if claim.outcome is ClaimOutcome.ALREADY_DONE:
        logger.info("Duplicate webhook delivery ignored", extra={"event_id": event_id})
        return _ack(event_id, "duplicate")
    if claim.outcome is ClaimOutcome.REJECTED:
        logger.info("Webhook event claimed by another worker", extra={"event_id": event_id})
        raise WebhookInProgress(details={"event_id": event_id})

    attempts = claim.event.attempts
    event = parse_event(payload)
    try:
        snapshot = dispatch_event(db, event)
        if not idempotency.mark_success(db, event_id, snapshot, attempts=attempts):
            db.rollback()
            logger.warning("Webhook claim taken over before commit", extra={"event_id": event_id})
            raise WebhookInProgress(details={"event_id": event_id})
        db.commit()
    except WEBHOOK_ANOMALIES as exc:
        db.rollback()
        logger.warning(
            "Webhook event rejected as data anomaly",
            extra={"event_id": event_id, "event_type": event_type, "error_code": exc.code},
        )
        _record_anomaly(db, event_id, attempts, exc)
        return _ack(event_id, "anomaly", error_code=exc.code)
    except SQLAlchemyError as exc:
        # StaleDataError lands here too; the redelivery re-reads the orders.
        db.rollback()
        logger.error(
            "Webhook processing failed on the store",
            exc_info=True,
            extra={"event_id": event_id, "event_type": event_type},
        )
        _record_store_failure(db, event_id, attempts, exc)
        raise StoreUnavailable() from exc

    status = "ignored" if isinstance(event, Unhandled) else "processed"
    logger.info(
        "Stripe webhook processed",
        extra={"event_id": event_id, "event_type": event_type, "status": status},
    )
    return _ack(event_id, status)


__all__ = ["dispatch_event", "reconcile_gateway_event"]
