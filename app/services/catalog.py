"""Catalog lookups used when pricing a checkout."""
from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from app.models.catalog import Product
from app.utils.errors import InvalidLineItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    vendor_id: int
    name: str
    description: str | None
    image_url: str | None
    quantity: int
    unit_amount: int
    currency: str

    @property
    def line_amount(self) -> int:
        return self.unit_amount * self.quantity


def _merge_quantities(items: Iterable[tuple[int, int]]) -> "OrderedDict[int, int]":
    merged: OrderedDict[int, int] = OrderedDict()
    for product_id, quantity in items:
        if quantity is None or quantity <= 0:
            raise InvalidLineItem(
                "Quantity must be a positive integer.",
                details={"product_id": product_id, "quantity": quantity},
            )
        merged[product_id] = merged.get(product_id, 0) + quantity
    return merged


def price_line_items(db: Session, items: Iterable[tuple[int, int]], *, currency: str) -> list[PricedLine]:
    """Resolve ``(product_id, quantity)`` pairs into priced, purchasable lines.

    Duplicate product ids are merged. Every product must exist, be purchasable,
    belong to an active vendor and be priced in ``currency``.
    """

    quantities = _merge_quantities(items)
    if not quantities:
        raise InvalidLineItem("At least one line item is required.")

    stmt = (
        select(Product)
        .options(joinedload(Product.vendor))
        .where(Product.id.in_(list(quantities)))
    )
    products = {product.id: product for product in db.scalars(stmt).unique()}

    priced: list[PricedLine] = []
    for product_id, quantity in quantities.items():
        product = products.get(product_id)
        if product is None:
            raise InvalidLineItem("Product not found.", details={"product_id": product_id})
        if not product.is_purchasable or product.vendor is None or not product.vendor.is_active:
            raise InvalidLineItem("Product is not purchasable.", details={"product_id": product_id})
        if product.currency.lower() != currency:
            raise InvalidLineItem(
                "Product is priced in a different currency.",
                details={"product_id": product_id, "currency": product.currency},
            )
        priced.append(
            PricedLine(
                product_id=product.id,
                vendor_id=product.vendor_id,
                name=product.name,
                description=product.description,
                image_url=product.image_url,
                quantity=quantity,
                unit_amount=product.unit_amount,
                currency=currency,
            )
        )
    return priced


def group_by_vendor(lines: Iterable[PricedLine]) -> "OrderedDict[int, list[PricedLine]]":
    grouped: OrderedDict[int, list[PricedLine]] = OrderedDict()
    for line in lines:
        grouped.setdefault(line.vendor_id, []).append(line)
    return grouped
