"""Tests for the pending-order sweep."""
from datetime import timedelta

from sqlalchemy import select, update

from app.core.runtime_state import last_sweep
from app.models import AuditLog, Order, OrderStatus
from app.services import cron
from app.services.cron import cancel_stale_pending_orders, cancel_stale_pending_orders_once
from app.utils.time import utcnow
from conftest import TestingSessionLocal


def _age(db_session, order: Order, minutes: int) -> None:
    db_session.execute(
        update(Order).where(Order.id == order.id).values(created_at=utcnow() - timedelta(minutes=minutes))
    )
    db_session.commit()


def test_sweep_cancels_only_stale_pending_orders(db_session, make_identity, make_order):
    buyer, _ = make_identity()
    stale = make_order(buyer)
    fresh = make_order(buyer)
    old_paid = make_order(buyer, status=OrderStatus.PAID)
    _age(db_session, stale, 120)
    _age(db_session, old_paid, 120)

    cancelled = cancel_stale_pending_orders(db_session)

    assert cancelled == [stale.order_id]
    db_session.expire_all()
    assert db_session.get(Order, stale.id).status == OrderStatus.CANCELLED
    assert db_session.get(Order, fresh.id).status == OrderStatus.PENDING
    assert db_session.get(Order, old_paid.id).status == OrderStatus.PAID
    audit = db_session.scalars(select(AuditLog).where(AuditLog.action == "ORDER_PENDING_EXPIRED")).one()
    assert audit.entity_id == stale.id


def test_sweep_is_idempotent(db_session, make_identity, make_order):
    buyer, _ = make_identity()
    stale = make_order(buyer)
    _age(db_session, stale, 240)

    assert cancel_stale_pending_orders(db_session) == [stale.order_id]
    assert cancel_stale_pending_orders(db_session) == []


def test_scheduled_entry_point_records_last_run(db_session, make_identity, make_order):
    buyer, _ = make_identity()
    order = make_order(buyer)

    count = cancel_stale_pending_orders_once(now=utcnow() + timedelta(days=1))

    assert count == 1
    assert last_sweep()["cancelled"] == 1
    db_session.expire_all()
    assert db_session.get(Order, order.id).status == OrderStatus.CANCELLED


def test_sweep_backs_off_when_a_payment_lands_mid_run(db_session, make_identity, make_order, monkeypatch):
    buyer, _ = make_identity()
    order = make_order(buyer)
    _age(db_session, order, 120)
    real_log_audit = cron.log_audit

    def _payment_lands(db, **kwargs):
        paid = db_session.get(Order, order.id)
        paid.status = OrderStatus.PAID
        db_session.commit()
        real_log_audit(db, **kwargs)

    monkeypatch.setattr(cron, "log_audit", _payment_lands)
    worker = TestingSessionLocal()
    try:
        assert cron.cancel_stale_pending_orders(worker) == []
    finally:
        worker.close()

    db_session.expire_all()
    assert db_session.get(Order, order.id).status == OrderStatus.PAID
    assert db_session.scalars(select(AuditLog).where(AuditLog.action == "ORDER_PENDING_EXPIRED")).all() == []
