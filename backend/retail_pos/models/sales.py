from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SALE_STATUS_PENDING = "pending"
SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_REFUNDED = "refunded"
SALE_STATUS_CANCELLED = "cancelled"

TERMINAL_SALE_STATUSES = (SALE_STATUS_REFUNDED, SALE_STATUS_CANCELLED)

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_REFUNDED = "refunded"

PAYMENT_METHODS = ("cash", "card", "upi", "credit", "bank_transfer")


class Sale(db.Model):
    """
    Sale record, immutable once completed.

    LIFECYCLE: completed -> refunded | cancelled, exactly once. A terminal
    sale is never re-opened. `version_id` guards the transition against
    concurrent refunds (optimistic locking).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_sales_invoice_number"),
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable, day-scoped identifier (e.g., "INV-20261019-0007")
    invoice_number = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    gross_profit_cents = db.Column(db.Integer, nullable=False, default=0)
    net_profit_cents = db.Column(db.Integer, nullable=False, default=0)

    # Payment
    payment_method = db.Column(db.String(32), nullable=False, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    customer_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Actor ids come from the upstream authentication layer
    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Refund / cancellation audit trail
    refunded_by = db.Column(db.String(64), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)
    refund_amount_cents = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        order_by="SaleLine.line_number",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "gross_profit_cents": self.gross_profit_cents,
            "net_profit_cents": self.net_profit_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "amount_paid_cents": self.amount_paid_cents,
            "change_cents": self.change_cents,
            "remaining_cents": max(self.total_cents - self.amount_paid_cents, 0),
            "customer_name": self.customer_name,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "refunded_by": self.refunded_by,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "refund_reason": self.refund_reason,
            "refund_amount_cents": self.refund_amount_cents,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """
    One priced line of a sale.

    unit_price_cents and unit_cost_cents are snapshots taken at sale time;
    later catalog price changes must not alter them.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_lines_sale_line_number"),
        db.CheckConstraint("quantity >= 1", name="ck_sale_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    line_subtotal_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "line_subtotal_cents": self.line_subtotal_cents,
            "line_total_cents": self.line_total_cents,
            "profit_cents": self.profit_cents,
        }
