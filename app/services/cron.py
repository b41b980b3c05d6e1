"""Background cron jobs for maintenance tasks."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.config import get_settings
from app.core.runtime_state import record_sweep
from app.db import session_scope
from app.models.order import Order, OrderStatus
from app.services.order_state import transition
from app.utils.audit import log_audit
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

SWEEP_BATCH_SIZE = 500


def cancel_stale_pending_orders(db: Session, *, now: datetime | None = None) -> list[str]:
    """Cancel ``pending`` orders whose checkout window has long passed.

    Covers rows left behind when the checkout compensation could not run and
    sessions whose expiry event never arrived. Returns the cancelled order ids.
    """

    settings = get_settings()
    now = now or utcnow()
    cutoff = now - timedelta(
        minutes=settings.CHECKOUT_SESSION_TTL_MINUTES + settings.PENDING_SWEEP_GRACE_MINUTES
    )
    stmt = (
        select(Order)
        .where(Order.status == OrderStatus.PENDING, Order.created_at < cutoff)
        .order_by(Order.id)
        .limit(SWEEP_BATCH_SIZE)
        .with_for_update(skip_locked=True)
        .execution_options(populate_existing=True)
    )
    cancelled: list[str] = []
    for order in db.scalars(stmt):
        order.status = transition(order.status, OrderStatus.CANCELLED)
        log_audit(
            db,
            actor="system:sweep",
            action="ORDER_PENDING_EXPIRED",
            entity="Order",
            entity_id=order.id,
            data={"order_id": order.order_id, "checkout_attempt_id": order.checkout_attempt_id},
        )
        cancelled.append(order.order_id)
    try:
        db.commit()
    except StaleDataError:
        # A webhook settled one of the rows first; the next run starts over.
        db.rollback()
        logger.warning("Pending sweep raced a concurrent order update", extra={"order_ids": cancelled})
        return []
    return cancelled


def cancel_stale_pending_orders_once(now: datetime | None = None) -> int:
    """Scheduler entry point: run one sweep in its own session."""

    with session_scope() as db:
        cancelled = cancel_stale_pending_orders(db, now=now)
    record_sweep(utcnow(), len(cancelled))
    if cancelled:
        logger.info("Stale pending orders cancelled", extra={"order_ids": cancelled})
    return len(cancelled)


__all__ = ["cancel_stale_pending_orders", "cancel_stale_pending_orders_once"]
