from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


STOCK_OUT = "out_of_stock"
STOCK_LOW = "low_stock"
STOCK_IN = "in_stock"
STOCK_OVER = "overstock"


class Product(db.Model):
    """
    Catalog item with its on-hand quantity.

    Catalog fields (name, prices, thresholds) are maintained by catalog
    management. `quantity` is owned by the stock ledger
    (services/inventory_service.py) and must only change through its
    reserve/release operations.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        db.Index("ix_products_active_quantity", "is_active", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False, default=0, index=True)
    reorder_level = db.Column(db.Integer, nullable=False, default=10)
    max_stock = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Only stamped by restocking, never by refund restoration
    last_restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def stock_status(self) -> str:
        if self.quantity <= 0:
            return STOCK_OUT
        if self.quantity <= self.reorder_level:
            return STOCK_LOW
        if self.max_stock is not None and self.quantity > self.max_stock:
            return STOCK_OVER
        return STOCK_IN

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "quantity": self.quantity,
            "reorder_level": self.reorder_level,
            "max_stock": self.max_stock,
            "stock_status": self.stock_status,
            "is_active": self.is_active,
            "last_restocked_at": to_utc_z(self.last_restocked_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
