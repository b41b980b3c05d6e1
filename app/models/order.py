"""Order store models."""
import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class OrderStatus(str, enum.Enum):
    """Lifecycle states of a vendor order."""

    PENDING = "pending"
    PAID = "paid"
    PREPARING = "preparing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    FAILED = "failed"
    REFUNDED = "refunded"


class Order(Base):
    """One vendor's share of a checkout attempt.

    A checkout spanning several vendors produces several rows that share the
    same ``checkout_attempt_id`` and, once the gateway session exists, the same
    ``gateway_session_id``.
    """

    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("order_id", name="uq_orders_order_id"),
        UniqueConstraint(
            "gateway_session_id",
            "vendor_id",
            name="uq_orders_gateway_session_vendor",
        ),
        CheckConstraint("total_amount >= 0", name="non_negative_total"),
        Index("ix_orders_checkout_attempt_id", "checkout_attempt_id"),
        Index("ix_orders_gateway_session_id", "gateway_session_id"),
        Index("ix_orders_buyer_id", "buyer_id"),
        Index("ix_orders_vendor_status", "vendor_id", "status"),
        Index("ix_orders_status_created_at", "status", "created_at"),
    )

    order_id: Mapped[str] = mapped_column(String(40), nullable=False)
    checkout_attempt_id: Mapped[str] = mapped_column(String(64), nullable=False)
    gateway_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gateway_payment_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

    buyer_id: Mapped[int] = mapped_column(ForeignKey("identities.id"), nullable=False)
    vendor_id: Mapped[int] = mapped_column(ForeignKey("vendors.id"), nullable=False)
    consultation_id: Mapped[int | None] = mapped_column(ForeignKey("consultations.id"), nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        SqlEnum(OrderStatus, name="orderstatus", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=OrderStatus.PENDING,
    )

    shipping_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Bumped on every ORM write; a stale in-memory row fails its UPDATE.
    version: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    __mapper_args__ = {"version_id_col": version}


class OrderItem(Base):
    """A product line inside a vendor order."""

    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="positive_quantity"),
        Index("ix_order_items_order_id", "order_id"),
    )

    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), nullable=False)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    line_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
