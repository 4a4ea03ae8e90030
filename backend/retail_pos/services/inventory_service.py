# Overview: Stock ledger; the only code path allowed to change Product.quantity.

# backend/retail_pos/services/inventory_service.py

from __future__ import annotations

import logging

from sqlalchemy import or_, update

from ..extensions import db
from ..errors import InsufficientStockError, InvalidQuantityError, ProductNotFoundError
from ..models import Product
from ..models.inventory import STOCK_LOW, STOCK_OUT, STOCK_OVER
from ..time_utils import to_utc_z, utcnow
from .audit_service import emit_event
from .concurrency import run_with_retry

"""
Stock Ledger Invariants (authoritative)

- On-hand quantity never goes negative. reserve() is a single conditional
  UPDATE ("decrement if quantity >= n"); the database row is the
  linearization point, so two concurrent reservations whose combined demand
  exceeds stock yield exactly one success.
- A failed reservation writes nothing.
- release() always succeeds for an existing product; no upper bound is
  enforced (overstock is a reporting classification only).
- last_restocked_at is stamped only when the caller passes restock=True.
  Sale rollback and refund restoration are not restocking.
- No other module reads-then-writes Product.quantity.
"""

logger = logging.getLogger(__name__)


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError("quantity must be an integer", details={"quantity": quantity})
    if quantity < 1:
        raise InvalidQuantityError("quantity must be at least 1", details={"quantity": quantity})
    return quantity


def get_quantity_on_hand(product_id: int) -> int:
    quantity = (
        db.session.query(Product.quantity)
        .filter(Product.id == product_id)
        .scalar()
    )
    if quantity is None:
        raise ProductNotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return int(quantity)


def _reserve_inner(product_id: int, quantity: int) -> bool:
    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            Product.is_active.is_(True),
            Product.quantity >= quantity,
        )
        .values(quantity=Product.quantity - quantity)
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def _reservation_failure(product_id: int, quantity: int):
    """Explain a zero-row reservation without mutating anything."""
    row = (
        db.session.query(Product.quantity, Product.is_active)
        .filter(Product.id == product_id)
        .first()
    )
    if row is None or not row.is_active:
        return ProductNotFoundError(
            f"Product {product_id} not found or inactive",
            details={"product_id": product_id},
        )
    return InsufficientStockError(product_id, quantity, int(row.quantity))


def reserve(product_id: int, quantity: int, *, commit: bool = True) -> None:
    """
    Decrement on-hand stock by `quantity` if at least that much is on hand.

    Raises InsufficientStockError (or ProductNotFoundError) without changing
    any state. With commit=True the reservation is durable on return.
    """
    _validate_quantity(quantity)

    def _op():
        if _reserve_inner(product_id, quantity):
            if commit:
                db.session.commit()
            return
        error = _reservation_failure(product_id, quantity)
        if commit:
            db.session.rollback()
        raise error

    if commit:
        run_with_retry(_op)
    else:
        _op()


def release(product_id: int, quantity: int, *, restock: bool = False, commit: bool = True) -> None:
    """
    Increment on-hand stock by `quantity`.

    restock=True marks a genuine restocking (stamps last_restocked_at);
    compensating rollbacks and refund restoration pass restock=False.
    """
    _validate_quantity(quantity)

    values = {"quantity": Product.quantity + quantity}
    if restock:
        values["last_restocked_at"] = utcnow()

    def _op():
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        result = db.session.execute(stmt)
        if result.rowcount != 1:
            if commit:
                db.session.rollback()
            raise ProductNotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        if commit:
            db.session.commit()

    if commit:
        run_with_retry(_op)
    else:
        # Caller owns the transaction; retrying here would replay its other work
        _op()


def get_stock_level(product_id: int) -> dict:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    db.session.refresh(product)
    return {
        "product_id": product.id,
        "quantity": product.quantity,
        "reorder_level": product.reorder_level,
        "max_stock": product.max_stock,
        "stock_status": product.stock_status,
        "last_restocked_at": to_utc_z(product.last_restocked_at),
    }


def restock(product_id: int, quantity: int, actor_id: str | None = None) -> dict:
    """Receive new stock for a product and report the resulting level."""
    release(product_id, quantity, restock=True)
    level = get_stock_level(product_id)

    if level["stock_status"] == STOCK_OVER:
        logger.info("Product %s is above max stock after restock (%s)", product_id, level["quantity"])

    emit_event(
        "inventory_restocked",
        category="inventory",
        actor_id=actor_id,
        target_type="product",
        target_id=product_id,
        description=f"Restocked {quantity} units",
        payload={"quantity": quantity, "on_hand": level["quantity"], "stock_status": level["stock_status"]},
    )
    return level


def get_stock_alerts() -> dict:
    """
    Active products at or below their reorder level, split by stock status.

    Zero on-hand goes under out_of_stock only, never both lists.
    """
    products = (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            or_(Product.quantity <= Product.reorder_level, Product.quantity <= 0),
        )
        .order_by(Product.quantity.asc(), Product.id.asc())
        .all()
    )
    return {
        "low_stock": [p.to_dict() for p in products if p.stock_status == STOCK_LOW],
        "out_of_stock": [p.to_dict() for p in products if p.stock_status == STOCK_OUT],
    }
