"""Test configuration."""
import hashlib
import hmac
import json
import os
import time
from collections.abc import AsyncIterator, Callable, Iterator
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import Session, sessionmaker

# --- Default environment, set before the app reads its settings
os.environ.setdefault("DATABASE_URL", "sqlite:///./marketplace_test.db")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("INTERNAL_API_KEY", "internal-test-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("PROMETHEUS_ENABLED", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from app.main import app  # noqa: E402
from app.db import get_db  # noqa: E402
from app.models import (  # noqa: E402
    Base,
    Identity,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    Vendor,
)
from app.services.identities import issue_session  # noqa: E402

DB_PATH = Path("./marketplace_test.db")
WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh database file for the session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False,
                                   future=True, expire_on_commit=False)

# --- (2) Schema comes from Alembic only
_run_migrations()


def _truncate_all() -> None:
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(delete(table))


@pytest.fixture
def db_session() -> Iterator[Session]:
    # Services commit for real, so rows are wiped after each test.
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        _truncate_all()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session
    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


# --- Domain factories

@pytest.fixture
def make_vendor(db_session: Session) -> Callable[..., Vendor]:
    def _factory(name: str | None = None, *, is_active: bool = True) -> Vendor:
        vendor = Vendor(name=name or f"vendor-{uuid4().hex[:6]}", is_active=is_active)
        db_session.add(vendor)
        db_session.commit()
        return vendor

    return _factory


@pytest.fixture
def make_product(db_session: Session, make_vendor) -> Callable[..., Product]:
    def _factory(
        vendor: Vendor | None = None,
        *,
        unit_amount: int = 1000,
        currency: str = "jpy",
        is_purchasable: bool = True,
        name: str | None = None,
    ) -> Product:
        product = Product(
            vendor_id=(vendor or make_vendor()).id,
            name=name or f"product-{uuid4().hex[:6]}",
            unit_amount=unit_amount,
            currency=currency,
            is_purchasable=is_purchasable,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _factory


@pytest.fixture
def make_identity(db_session: Session) -> Callable[..., tuple[Identity, dict[str, str]]]:
    """Create an identity with a live session; returns it with auth headers."""

    def _factory(*, guest: bool = False, vendor: Vendor | None = None, email: str | None = None):
        identity = Identity(
            is_guest=guest,
            is_active=True,
            external_provider=None if guest else "line",
            external_subject=None if guest else f"U{uuid4().hex}",
            email=email,
            vendor_id=vendor.id if vendor else None,
        )
        db_session.add(identity)
        db_session.flush()
        token = issue_session(db_session, identity)
        db_session.commit()
        return identity, {"Authorization": f"Bearer {token}"}

    return _factory


@pytest.fixture
def make_order(db_session: Session, make_product) -> Callable[..., Order]:
    """Insert an order row directly, bypassing checkout."""

    def _factory(
        buyer: Identity,
        *,
        product: Product | None = None,
        quantity: int = 1,
        status: OrderStatus = OrderStatus.PENDING,
        session_id: str | None = None,
        attempt_id: str | None = None,
    ) -> Order:
        product = product or make_product()
        amount = product.unit_amount * quantity
        order = Order(
            order_id=f"ORD{uuid4().hex[:12].upper()}",
            checkout_attempt_id=attempt_id or uuid4().hex,
            gateway_session_id=session_id,
            buyer_id=buyer.id,
            vendor_id=product.vendor_id,
            currency=product.currency,
            total_amount=amount,
            status=status,
        )
        order.items = [
            OrderItem(
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                unit_amount=product.unit_amount,
                line_amount=amount,
            )
        ]
        db_session.add(order)
        db_session.commit()
        return order

    return _factory


# --- Stripe helpers

def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the SDK verifier accepts."""

    ts = timestamp if timestamp is not None else int(time.time())
    signature = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def build_event(
    event_type: str,
    obj: dict[str, Any],
    *,
    event_id: str | None = None,
) -> str:
    return json.dumps(
        {
            "id": event_id or f"evt_{uuid4().hex}",
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "data": {"object": obj},
        }
    )


@pytest.fixture
def post_webhook(client) -> Callable[..., Any]:
    async def _post(payload: str, *, signature: str | None = None):
        headers = {
            "Content-Type": "application/json",
            "Stripe-Signature": signature if signature is not None else sign_payload(payload),
        }
        return await client.post("/webhooks/payment", content=payload, headers=headers)

    return _post


class FakeStripeClient:
    """Records checkout calls instead of reaching Stripe."""

    instances: list["FakeStripeClient"] = []
    fail_with: Exception | None = None

    def __init__(self, settings=None) -> None:
        self.created: list[dict[str, Any]] = []
        self.expired: list[str] = []
        FakeStripeClient.instances.append(self)

    @classmethod
    def from_env(cls) -> "FakeStripeClient":
        return cls()

    def create_checkout_session(self, **kwargs: Any) -> SimpleNamespace:
        if FakeStripeClient.fail_with is not None:
            raise FakeStripeClient.fail_with
        self.created.append(kwargs)
        session_id = f"cs_test_{uuid4().hex}"
        return SimpleNamespace(id=session_id, url=f"https://checkout.stripe.test/c/pay/{session_id}")

    def expire_checkout_session(self, session_id: str) -> None:
        self.expired.append(session_id)

    def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        return {
            "id": session_id,
            "status": "complete",
            "payment_status": "paid",
            "amount_total": None,
            "currency": "jpy",
        }


@pytest.fixture
def fake_stripe(monkeypatch) -> type[FakeStripeClient]:
    FakeStripeClient.instances = []
    FakeStripeClient.fail_with = None
    monkeypatch.setattr("app.services.checkout.StripeClient", FakeStripeClient)
    monkeypatch.setattr("app.services.orders.StripeClient", FakeStripeClient)
    return FakeStripeClient
