"""Tests for buyer order reads and vendor fulfillment."""
import pytest
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from app.models import AuditLog, Order, OrderStatus
from conftest import TestingSessionLocal


@pytest.mark.anyio
async def test_buyer_sees_only_own_orders(client, make_identity, make_order):
    buyer, headers = make_identity()
    other, _ = make_identity()
    mine = make_order(buyer, quantity=2)
    theirs = make_order(other)

    listed = await client.get("/orders", headers=headers)
    detail = await client.get(f"/orders/{mine.order_id}", headers=headers)
    foreign = await client.get(f"/orders/{theirs.order_id}", headers=headers)

    assert listed.status_code == 200
    assert [o["orderId"] for o in listed.json()] == [mine.order_id]
    assert detail.json()["totalAmount"] == mine.total_amount
    assert detail.json()["items"][0]["quantity"] == 2
    assert detail.json()["status"] == "pending"
    assert foreign.status_code == 404
    assert foreign.json()["error"]["code"] == "ORDER_NOT_FOUND"


@pytest.mark.anyio
async def test_orders_can_be_filtered_by_status(client, make_identity, make_order):
    buyer, headers = make_identity()
    make_order(buyer)
    paid = make_order(buyer, status=OrderStatus.PAID)

    response = await client.get("/orders", params={"status": "paid"}, headers=headers)

    assert [o["orderId"] for o in response.json()] == [paid.order_id]


@pytest.mark.anyio
async def test_vendor_staff_advance_fulfillment(
    client, db_session, make_vendor, make_product, make_identity, make_order
):
    vendor = make_vendor()
    buyer, _ = make_identity()
    _, staff_headers = make_identity(vendor=vendor)
    order = make_order(buyer, product=make_product(vendor), status=OrderStatus.PAID)

    for target in ("preparing", "shipped", "delivered"):
        response = await client.post(
            f"/vendor/orders/{order.order_id}/status",
            json={"status": target, "note": f"moved to {target}"},
            headers=staff_headers,
        )
        assert response.status_code == 200, response.text
        assert response.json()["status"] == target

    db_session.expire_all()
    assert db_session.get(Order, order.id).status == OrderStatus.DELIVERED
    actions = db_session.scalars(select(AuditLog.action).where(AuditLog.entity_id == order.id)).all()
    assert actions.count("ORDER_STATUS_CHANGED") == 3


@pytest.mark.anyio
async def test_illegal_fulfillment_step_is_conflict(
    client, make_vendor, make_product, make_identity, make_order
):
    vendor = make_vendor()
    buyer, _ = make_identity()
    _, staff_headers = make_identity(vendor=vendor)
    order = make_order(buyer, product=make_product(vendor))

    shipped = await client.post(
        f"/vendor/orders/{order.order_id}/status", json={"status": "shipped"}, headers=staff_headers
    )
    paid = await client.post(
        f"/vendor/orders/{order.order_id}/status", json={"status": "paid"}, headers=staff_headers
    )

    assert shipped.status_code == 409
    assert shipped.json()["error"]["code"] == "ILLEGAL_TRANSITION"
    assert paid.status_code == 409


@pytest.mark.anyio
async def test_vendor_cannot_touch_other_vendors_orders(
    client, make_vendor, make_product, make_identity, make_order
):
    buyer, _ = make_identity()
    _, staff_headers = make_identity(vendor=make_vendor())
    order = make_order(buyer, product=make_product(make_vendor()), status=OrderStatus.PAID)

    response = await client.post(
        f"/vendor/orders/{order.order_id}/status", json={"status": "preparing"}, headers=staff_headers
    )

    assert response.status_code == 404


@pytest.mark.anyio
async def test_buyers_are_not_vendor_staff(client, make_identity, make_order):
    buyer, headers = make_identity()
    order = make_order(buyer, status=OrderStatus.PAID)

    response = await client.post(
        f"/vendor/orders/{order.order_id}/status", json={"status": "preparing"}, headers=headers
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


@pytest.mark.anyio
async def test_checkout_session_status_is_read_only(
    client, db_session, fake_stripe, make_identity, make_order
):
    buyer, headers = make_identity()
    order = make_order(buyer, session_id="cs_test_status")

    response = await client.get("/checkout/sessions/cs_test_status", headers=headers)

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["paymentStatus"] == "paid"
    assert body["orders"] == [{"orderId": order.order_id, "status": "pending", "totalAmount": order.total_amount}]
    db_session.expire_all()
    assert db_session.get(Order, order.id).status == OrderStatus.PENDING


@pytest.mark.anyio
async def test_checkout_session_status_hides_other_buyers(client, fake_stripe, make_identity, make_order):
    owner, _ = make_identity()
    _, headers = make_identity()
    make_order(owner, session_id="cs_test_private")

    response = await client.get("/checkout/sessions/cs_test_private", headers=headers)

    assert response.status_code == 404


def test_write_from_a_stale_read_is_refused(db_session, make_identity, make_order):
    buyer, _ = make_identity()
    order = make_order(buyer)
    worker = TestingSessionLocal()
    try:
        stale = worker.get(Order, order.id)
        order.status = OrderStatus.PAID
        db_session.commit()

        stale.status = OrderStatus.CANCELLED
        with pytest.raises(StaleDataError):
            worker.commit()
        worker.rollback()
    finally:
        worker.close()

    db_session.expire_all()
    assert db_session.get(Order, order.id).status == OrderStatus.PAID
