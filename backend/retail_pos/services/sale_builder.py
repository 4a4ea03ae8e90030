# Overview: Sale builder; prices a cart into a sale draft without touching the database.

"""
Sale Builder

Pure computation: (cart, product snapshots, adjustments) -> SaleDraft.
No persistence, no stock mutation, no clock. Every error is raised before
anything else in the pipeline runs, so a rejected cart leaves no state behind.

PRICING (all integer cents):
- unit price  = explicit override, else product selling price
- unit cost   = product cost price (snapshot; stored on the line forever)
- line subtotal = unit price * quantity
- line total    = line subtotal - line discount + line tax
- line profit   = line total - unit cost * quantity
- subtotal      = sum(line subtotals)
- total         = subtotal - discount + tax
- gross profit  = sum(line profits)
- net profit    = total - sum(unit cost * quantity)

Operating expenses are allocated at the reporting layer, never here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from ..errors import (
    EmptyCartError,
    InputValidationError,
    InvalidPaymentMethodError,
    InvalidPricingError,
    InvalidQuantityError,
    ProductNotFoundError,
)
from ..models.sales import (
    PAYMENT_METHODS,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_PENDING,
)
from .catalog_service import ProductSnapshot


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _money(value: Any, field: str, *, default: int | None = 0) -> int | None:
    if value is None:
        return default
    if not _is_int(value):
        raise InvalidPricingError(f"{field} must be an integer amount in cents", details={field: value})
    if value < 0:
        raise InvalidPricingError(f"{field} cannot be negative", details={field: value})
    return value


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int
    unit_price_cents: int | None = None
    discount_cents: int = 0
    tax_cents: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CartLine":
        if not isinstance(data, Mapping):
            raise InputValidationError("cart items must be objects")
        product_id = data.get("product_id")
        if not _is_int(product_id):
            raise InputValidationError("product_id must be an integer", details={"product_id": product_id})
        return cls(
            product_id=product_id,
            quantity=data.get("quantity"),
            unit_price_cents=data.get("unit_price_cents"),
            discount_cents=data.get("discount_cents", 0),
            tax_cents=data.get("tax_cents", 0),
        )


@dataclass(frozen=True)
class DraftLine:
    line_number: int
    product_id: int
    product_name: str
    quantity: int
    unit_price_cents: int
    unit_cost_cents: int
    discount_cents: int
    tax_cents: int
    line_subtotal_cents: int
    line_total_cents: int
    profit_cents: int

    @property
    def cost_cents(self) -> int:
        return self.unit_cost_cents * self.quantity


@dataclass(frozen=True)
class SaleDraft:
    lines: tuple[DraftLine, ...]
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int
    gross_profit_cents: int
    net_profit_cents: int
    payment_method: str
    payment_status: str
    amount_paid_cents: int
    change_cents: int

    @property
    def total_cost_cents(self) -> int:
        return sum(line.cost_cents for line in self.lines)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def reservation_plan(self) -> list[tuple[int, int]]:
        """
        (product_id, quantity) pairs, one per product, ascending by id.

        A fixed order keeps two sales contending for the same products from
        locking them in opposite orders.
        """
        totals: dict[int, int] = {}
        for line in self.lines:
            totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
        return sorted(totals.items())


def parse_cart(cart: Iterable[Any] | None) -> list[CartLine]:
    if cart is None:
        raise EmptyCartError("Cart must contain at least one item")
    if isinstance(cart, (str, bytes, Mapping)):
        raise InputValidationError("items must be a list")
    lines = [item if isinstance(item, CartLine) else CartLine.from_dict(item) for item in cart]
    if not lines:
        raise EmptyCartError("Cart must contain at least one item")
    return lines


def _resolve_payment(total: int, amount_paid_cents: int | None) -> tuple[str, int, int]:
    if amount_paid_cents is None:
        return PAYMENT_STATUS_PENDING, 0, 0
    if amount_paid_cents >= total:
        return PAYMENT_STATUS_PAID, amount_paid_cents, amount_paid_cents - total
    if amount_paid_cents > 0:
        return PAYMENT_STATUS_PARTIAL, amount_paid_cents, 0
    return PAYMENT_STATUS_PENDING, 0, 0


def build_sale_draft(
    cart: Iterable[Any] | None,
    products: Mapping[int, ProductSnapshot],
    *,
    discount_cents: int = 0,
    tax_cents: int = 0,
    payment_method: str,
    amount_paid_cents: int | None = None,
) -> SaleDraft:
    """
    Price a cart against product snapshots.

    Raises EmptyCartError, InvalidQuantityError, ProductNotFoundError,
    InvalidPricingError or InvalidPaymentMethodError; never partially builds.
    """
    cart_lines = parse_cart(cart)

    if payment_method not in PAYMENT_METHODS:
        raise InvalidPaymentMethodError(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}",
            details={"payment_method": payment_method},
        )

    discount_cents = _money(discount_cents, "discount_cents")
    tax_cents = _money(tax_cents, "tax_cents")
    amount_paid_cents = _money(amount_paid_cents, "amount_paid_cents", default=None)

    for index, item in enumerate(cart_lines, start=1):
        if not _is_int(item.quantity) or item.quantity < 1:
            raise InvalidQuantityError(
                f"Quantity must be at least 1 (line {index})",
                details={"line_number": index, "product_id": item.product_id, "quantity": item.quantity},
            )

    lines: list[DraftLine] = []
    for index, item in enumerate(cart_lines, start=1):
        product = products.get(item.product_id)
        if product is None or not product.is_active:
            raise ProductNotFoundError(
                f"Product {item.product_id} not found",
                details={"line_number": index, "product_id": item.product_id},
            )

        unit_price = _money(item.unit_price_cents, "unit_price_cents", default=product.price_cents)
        unit_cost = product.cost_price_cents
        line_discount = _money(item.discount_cents, "discount_cents")
        line_tax = _money(item.tax_cents, "tax_cents")
        if unit_price is None or unit_price < 0 or unit_cost < 0:
            raise InvalidPricingError(
                f"Product {item.product_id} has an invalid price",
                details={"line_number": index, "product_id": item.product_id},
            )

        line_subtotal = unit_price * item.quantity
        line_total = line_subtotal - line_discount + line_tax
        if line_total < 0:
            raise InvalidPricingError(
                f"Line {index} total cannot be negative",
                details={"line_number": index, "line_total_cents": line_total},
            )

        lines.append(
            DraftLine(
                line_number=index,
                product_id=product.id,
                product_name=product.name,
                quantity=item.quantity,
                unit_price_cents=unit_price,
                unit_cost_cents=unit_cost,
                discount_cents=line_discount,
                tax_cents=line_tax,
                line_subtotal_cents=line_subtotal,
                line_total_cents=line_total,
                profit_cents=line_total - unit_cost * item.quantity,
            )
        )

    subtotal = sum(line.line_subtotal_cents for line in lines)
    total = subtotal - discount_cents + tax_cents
    if total < 0:
        raise InvalidPricingError(
            "Sale total cannot be negative",
            details={"subtotal_cents": subtotal, "discount_cents": discount_cents, "tax_cents": tax_cents},
        )

    total_cost = sum(line.cost_cents for line in lines)
    payment_status, amount_paid, change = _resolve_payment(total, amount_paid_cents)

    return SaleDraft(
        lines=tuple(lines),
        subtotal_cents=subtotal,
        discount_cents=discount_cents,
        tax_cents=tax_cents,
        total_cents=total,
        gross_profit_cents=sum(line.profit_cents for line in lines),
        net_profit_cents=total - total_cost,
        payment_method=payment_method,
        payment_status=payment_status,
        amount_paid_cents=amount_paid,
        change_cents=change,
    )
