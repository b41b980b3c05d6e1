"""Tests for guest-to-registered identity migration."""
import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.models import AuditLog, AuthSession, Consultation, Identity, Order
from app.services import guest_migration
from app.utils.errors import InvalidGuestIdentity

from conftest import TestingSessionLocal


@pytest.fixture
def guest_with_orders(db_session, make_identity, make_order):
    guest, guest_headers = make_identity(guest=True)
    orders = [make_order(guest) for _ in range(3)]
    consultation = Consultation(identity_id=guest.id, answers_json={"q1": "a"})
    db_session.add(consultation)
    db_session.commit()
    return guest, guest_headers, orders, consultation


@pytest.mark.anyio
async def test_migrate_guest_moves_orders_and_rejects_old_session(
    client, db_session, make_identity, guest_with_orders
):
    guest, guest_headers, orders, consultation = guest_with_orders
    user, user_headers = make_identity()

    response = await client.post(
        "/auth/migrate-guest", json={"guestIdentityId": guest.id}, headers=user_headers
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body == {
        "identityId": user.id,
        "guestIdentityId": guest.id,
        "ordersMoved": 3,
        "consultationsMoved": 1,
        "orderCount": 3,
    }

    db_session.expire_all()
    assert {o.buyer_id for o in db_session.scalars(select(Order))} == {user.id}
    assert db_session.get(Consultation, consultation.id).identity_id == user.id
    old = db_session.get(Identity, guest.id)
    assert old.is_active is False
    assert old.migrated_to_id == user.id
    assert old.deactivated_at is not None
    assert all(
        s.revoked_at is not None
        for s in db_session.scalars(select(AuthSession).where(AuthSession.identity_id == guest.id))
    )
    assert "GUEST_MIGRATED" in db_session.scalars(select(AuditLog.action)).all()

    stale = await client.get("/orders", headers=guest_headers)
    assert stale.status_code == 401

    listed = await client.get("/orders", headers=user_headers)
    assert len(listed.json()) == 3


@pytest.mark.anyio
async def test_second_migration_of_same_guest_is_rejected(
    client, db_session, make_identity, guest_with_orders
):
    guest, *_ = guest_with_orders
    _, user_headers = make_identity()
    first = await client.post("/auth/migrate-guest", json={"guestIdentityId": guest.id}, headers=user_headers)
    assert first.status_code == 200

    again = await client.post("/auth/migrate-guest", json={"guestIdentityId": guest.id}, headers=user_headers)

    assert again.status_code == 400
    assert again.json()["error"]["code"] == "INVALID_GUEST_IDENTITY"


def test_concurrent_migrations_are_exclusive(db_session, make_identity, guest_with_orders):
    guest, *_ = guest_with_orders
    user_a, _ = make_identity()
    user_b, _ = make_identity()

    other = TestingSessionLocal()
    try:
        target_b = other.get(Identity, user_b.id)
        result = guest_migration.migrate_guest(db_session, target=user_a, guest_identity_id=guest.id)
        with pytest.raises(InvalidGuestIdentity):
            guest_migration.migrate_guest(other, target=target_b, guest_identity_id=guest.id)
    finally:
        other.close()

    assert result.orders_moved == 3
    db_session.expire_all()
    assert {o.buyer_id for o in db_session.scalars(select(Order))} == {user_a.id}


@pytest.mark.anyio
async def test_registered_identity_cannot_be_migrated(client, make_identity):
    victim, _ = make_identity()
    _, headers = make_identity()

    response = await client.post("/auth/migrate-guest", json={"guestIdentityId": victim.id}, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_GUEST_IDENTITY"


@pytest.mark.anyio
async def test_guest_session_cannot_be_migration_target(client, make_identity):
    guest_a, _ = make_identity(guest=True)
    _, guest_b_headers = make_identity(guest=True)

    response = await client.post(
        "/auth/migrate-guest", json={"guestIdentityId": guest_a.id}, headers=guest_b_headers
    )

    assert response.status_code == 400


@pytest.mark.anyio
async def test_unknown_guest_is_rejected(client, make_identity):
    _, headers = make_identity()

    response = await client.post("/auth/migrate-guest", json={"guestIdentityId": 987654}, headers=headers)

    assert response.status_code == 400


@pytest.mark.anyio
async def test_migration_requires_a_session(client, guest_with_orders):
    guest, *_ = guest_with_orders

    response = await client.post("/auth/migrate-guest", json={"guestIdentityId": guest.id})

    assert response.status_code == 401


@pytest.mark.anyio
async def test_store_failure_moves_nothing(client, db_session, make_identity, guest_with_orders, monkeypatch):
    guest, _, orders, _ = guest_with_orders
    _, headers = make_identity()

    def _broken(db, identity_id):
        raise OperationalError("UPDATE auth_sessions", {}, Exception("database is locked"))

    monkeypatch.setattr(guest_migration, "revoke_sessions", _broken)

    response = await client.post("/auth/migrate-guest", json={"guestIdentityId": guest.id}, headers=headers)

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "STORE_UNAVAILABLE"
    db_session.expire_all()
    assert db_session.get(Identity, guest.id).is_active is True
    assert {o.buyer_id for o in db_session.scalars(select(Order))} == {guest.id}
