"""Catalog models: vendors and the products they sell."""
from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Vendor(Base):
    """A merchant selling through the platform."""

    __tablename__ = "vendors"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    products = relationship("Product", back_populates="vendor")


class Product(Base):
    """A purchasable product. Prices are in the smallest currency unit."""

    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("unit_amount >= 0", name="non_negative_unit_amount"),
        Index("ix_products_vendor_id", "vendor_id"),
    )

    vendor_id: Mapped[int] = mapped_column(ForeignKey("vendors.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    unit_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="jpy")
    is_purchasable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    vendor = relationship("Vendor", back_populates="products")
