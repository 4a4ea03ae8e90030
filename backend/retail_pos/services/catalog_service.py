# Overview: Read-only catalog lookup consumed by the sale builder.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..extensions import db
from ..models import Product


@dataclass(frozen=True)
class ProductSnapshot:
    """Point-in-time view of a product; the sale builder never sees ORM rows."""
    id: int
    name: str
    price_cents: int
    cost_price_cents: int
    quantity: int
    is_active: bool

    @classmethod
    def from_product(cls, product: Product) -> "ProductSnapshot":
        return cls(
            id=product.id,
            name=product.name,
            price_cents=product.price_cents,
            cost_price_cents=product.cost_price_cents or 0,
            quantity=product.quantity,
            is_active=bool(product.is_active),
        )


def get_product(product_id: int) -> ProductSnapshot | None:
    product = db.session.get(Product, product_id)
    return ProductSnapshot.from_product(product) if product else None


def get_product_snapshots(product_ids: Iterable[int]) -> dict[int, ProductSnapshot]:
    """
    Load snapshots for the given ids. Unknown ids are simply absent.

    Inactive products are returned so the caller can decide how to report them.
    """
    ids = {pid for pid in product_ids if isinstance(pid, int) and not isinstance(pid, bool)}
    if not ids:
        return {}
    rows = db.session.query(Product).filter(Product.id.in_(ids)).all()
    return {p.id: ProductSnapshot.from_product(p) for p in rows}
