"""
Sale Transaction Coordinator

WHY: Creating a sale touches three owners of state (stock ledger, invoice
sequencer, sales table) that cannot share one long transaction without
holding product locks for the whole checkout. The coordinator runs them as
a saga: every step that succeeds has a compensating step that runs if a
later one fails.

CREATE:
1. Build the draft (pure; nothing mutated on error)
2. Reserve stock per product, ascending product id; on failure release
   everything already reserved
3. Allocate an invoice number (own transaction; may be burned)
4. Persist the sale as completed (bounded retry); on failure release stock
5. Emit a best-effort audit event

REFUND / CANCEL:
- Only completed sales; exactly once (row lock + version_id_col)
- Full-amount refunds and cancellations restore every line's quantity in
  the same DB transaction as the status change
- Partial refunds never restore stock (RESTOCK_ON_PARTIAL_REFUND)

States: Draft -> Validating -> StockReserved are in-memory only; the sale
row is written once as completed and may move to refunded or cancelled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Mapping

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..errors import (
    AlreadyRefundedError,
    InputValidationError,
    InvalidRefundAmountError,
    InvalidSaleStateError,
    RefundExceedsTotalError,
    SaleError,
    SaleNotFoundError,
    SalePersistenceError,
)
from ..models import Sale, SaleLine
from ..models.sales import (
    PAYMENT_STATUS_REFUNDED,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_REFUNDED,
    TERMINAL_SALE_STATUSES,
)
from ..time_utils import utcnow
from ..validation import require_json_object
from . import inventory_service, invoice_service
from .audit_service import OUTCOME_FAILURE, emit_event
from .catalog_service import get_product_snapshots
from .concurrency import lock_for_update, run_with_retry
from .sale_builder import SaleDraft, build_sale_draft, parse_cart

logger = logging.getLogger(__name__)

# Partial refunds are price adjustments, not returned merchandise.
# Pending product-owner decision on per-line return quantities.
RESTOCK_ON_PARTIAL_REFUND = False

REVERSAL_EVENTS = {
    SALE_STATUS_REFUNDED: ("sale_refunded", "sale_refund_failed"),
    SALE_STATUS_CANCELLED: ("sale_cancelled", "sale_cancel_failed"),
}


@dataclass(frozen=True)
class PaymentInfo:
    payment_method: str
    discount_cents: int = 0
    tax_cents: int = 0
    amount_paid_cents: int | None = None
    customer_name: str | None = None
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaymentInfo":
        data = require_json_object(data)
        return cls(
            payment_method=data.get("payment_method"),
            discount_cents=data.get("discount_cents", 0),
            tax_cents=data.get("tax_cents", 0),
            amount_paid_cents=data.get("amount_paid_cents"),
            customer_name=data.get("customer_name"),
            notes=data.get("notes"),
        )


def _require_actor(actor_id) -> str:
    if actor_id is None or str(actor_id).strip() == "":
        raise InputValidationError("actor_id is required")
    return str(actor_id)


def parse_request_body(body: Any, *, failure_event: str, actor_id, sale_id: int | None = None) -> Mapping[str, Any]:
    """
    Decoded JSON body for a state-changing sale request.

    A body that is not an object is rejected with the same failure event the
    operation itself would record, so malformed calls stay in the activity log.
    """
    try:
        return require_json_object(body)
    except InputValidationError as exc:
        emit_event(
            failure_event,
            outcome=OUTCOME_FAILURE,
            actor_id=actor_id,
            target_type="sale",
            target_id=sale_id,
            description=f"Rejected request: {exc.kind}",
            payload={"error": exc.kind, "details": exc.details},
        )
        raise


# =============================================================================
# RESERVATION BATCH
# =============================================================================

def _release_batch(reserved: list[tuple[int, int]]) -> None:
    """
    Compensate reservations. Keeps going past individual failures so one bad
    release cannot orphan the rest.
    """
    db.session.rollback()
    for product_id, quantity in reversed(reserved):
        try:
            inventory_service.release(product_id, quantity, restock=False)
        except Exception:
            logger.critical(
                "Failed to release reserved stock: product_id=%s quantity=%s",
                product_id, quantity,
                exc_info=True,
            )


def _reserve_batch(plan: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """
    Reserve every (product_id, quantity) in order, or none of them.

    BaseException is intercepted so that a cancellation raised mid-batch
    (worker timeout, interpreter shutdown) still releases what was reserved.
    """
    reserved: list[tuple[int, int]] = []
    try:
        for product_id, quantity in plan:
            inventory_service.reserve(product_id, quantity)
            reserved.append((product_id, quantity))
    except BaseException:
        if reserved:
            logger.info("Rolling back %d stock reservation(s)", len(reserved))
            _release_batch(reserved)
        raise
    return reserved


# =============================================================================
# PERSISTENCE
# =============================================================================

def _insert_sale(draft: SaleDraft, payment: PaymentInfo, actor_id: str, invoice_number: str) -> Sale:
    sale = Sale(
        invoice_number=invoice_number,
        status=SALE_STATUS_COMPLETED,
        subtotal_cents=draft.subtotal_cents,
        discount_cents=draft.discount_cents,
        tax_cents=draft.tax_cents,
        total_cents=draft.total_cents,
        gross_profit_cents=draft.gross_profit_cents,
        net_profit_cents=draft.net_profit_cents,
        payment_method=draft.payment_method,
        payment_status=draft.payment_status,
        amount_paid_cents=draft.amount_paid_cents,
        change_cents=draft.change_cents,
        customer_name=payment.customer_name,
        notes=payment.notes,
        created_by=actor_id,
        created_at=utcnow(),
    )
    for line in draft.lines:
        sale.lines.append(
            SaleLine(
                line_number=line.line_number,
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                unit_cost_cents=line.unit_cost_cents,
                discount_cents=line.discount_cents,
                tax_cents=line.tax_cents,
                line_subtotal_cents=line.line_subtotal_cents,
                line_total_cents=line.line_total_cents,
                profit_cents=line.profit_cents,
            )
        )
    db.session.add(sale)
    db.session.commit()
    return sale


def _is_invoice_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig) if exc.orig is not None else str(exc)
    return "invoice_number" in message


def _persist_sale(draft: SaleDraft, payment: PaymentInfo, actor_id: str, on_date: date | None) -> Sale:
    attempts = 3
    if has_app_context():
        attempts = max(int(current_app.config.get("INVOICE_RETRY_ATTEMPTS", 3)), 1)

    for attempt in range(attempts):
        try:
            invoice_number = invoice_service.next_invoice_number(on_date)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise SalePersistenceError("Failed to allocate invoice number") from exc

        try:
            return run_with_retry(lambda: _insert_sale(draft, payment, actor_id, invoice_number))
        except IntegrityError as exc:
            db.session.rollback()
            if not _is_invoice_conflict(exc):
                raise SalePersistenceError("Failed to persist sale") from exc
            logger.warning(
                "Invoice number %s already in use (attempt %d/%d); allocating another",
                invoice_number, attempt + 1, attempts,
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise SalePersistenceError("Failed to persist sale") from exc

    raise SalePersistenceError("Could not allocate a unique invoice number")


# =============================================================================
# CREATE
# =============================================================================

def create_sale(
    cart: Iterable[Any],
    payment: PaymentInfo | Mapping[str, Any],
    actor_id: str | int,
    *,
    on_date: date | None = None,
) -> Sale:
    """
    Turn a cart into a completed, persisted sale.

    Either the sale is persisted with its stock decremented, or no stock is
    changed. on_date overrides the invoice day (defaults to today, server-local).
    """
    try:
        actor = _require_actor(actor_id)
        if not isinstance(payment, PaymentInfo):
            payment = PaymentInfo.from_dict(payment)
        cart_lines = parse_cart(cart)
        products = get_product_snapshots(line.product_id for line in cart_lines)
        draft = build_sale_draft(
            cart_lines,
            products,
            discount_cents=payment.discount_cents,
            tax_cents=payment.tax_cents,
            payment_method=payment.payment_method,
            amount_paid_cents=payment.amount_paid_cents,
        )

        reserved = _reserve_batch(draft.reservation_plan())
        try:
            sale = _persist_sale(draft, payment, actor, on_date)
        except BaseException:
            logger.warning("Sale persistence failed; releasing %d reservation(s)", len(reserved))
            _release_batch(reserved)
            raise
    except Exception as exc:
        kind = getattr(exc, "kind", "internal_error")
        emit_event(
            "sale_create_failed",
            outcome=OUTCOME_FAILURE,
            actor_id=actor_id,
            target_type="sale",
            description=f"Sale creation failed: {kind}",
            payload={
                "error": kind,
                "payment_method": getattr(payment, "payment_method", None),
                "details": getattr(exc, "details", {}),
            },
        )
        raise

    emit_event(
        "sale_created",
        actor_id=actor,
        target_type="sale",
        target_id=sale.id,
        description=f"Sale {sale.invoice_number} completed",
        payload={
            "sale_id": sale.id,
            "invoice_number": sale.invoice_number,
            "total_cents": sale.total_cents,
            "item_count": len(draft.lines),
            "unit_count": draft.item_count,
            "payment_method": sale.payment_method,
            "status": sale.status,
        },
    )
    return sale


# =============================================================================
# REFUND / CANCEL
# =============================================================================

def _restoration_plan(sale: Sale) -> list[tuple[int, int]]:
    totals: dict[int, int] = {}
    for line in sale.lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return sorted(totals.items())


def _validate_refund_amount(amount_cents) -> int | None:
    if amount_cents is None:
        return None
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidRefundAmountError("amount_cents must be an integer", details={"amount_cents": amount_cents})
    if amount_cents <= 0:
        raise InvalidRefundAmountError("amount_cents must be positive", details={"amount_cents": amount_cents})
    return amount_cents


def _reverse_sale(
    sale_id: int,
    *,
    target_status: str,
    amount_cents: int | None,
    reason: str,
    actor_id: str,
) -> tuple[Sale, list[tuple[int, int]]]:
    def _op():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise SaleNotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})

        if sale.status in TERMINAL_SALE_STATUSES:
            raise AlreadyRefundedError(
                f"Sale {sale.invoice_number} has already been {sale.status}",
                details={"sale_id": sale.id, "status": sale.status},
            )

        if sale.status != SALE_STATUS_COMPLETED:
            raise InvalidSaleStateError(
                f"Cannot {target_status} a sale with status {sale.status}",
                details={"sale_id": sale.id, "status": sale.status},
            )

        refund_amount = sale.total_cents if amount_cents is None else amount_cents
        if refund_amount > sale.total_cents:
            raise RefundExceedsTotalError(
                "Refund amount exceeds sale total",
                details={"amount_cents": refund_amount, "total_cents": sale.total_cents},
            )

        sale.status = target_status
        sale.payment_status = PAYMENT_STATUS_REFUNDED
        sale.refunded_by = actor_id
        sale.refunded_at = utcnow()
        sale.refund_reason = reason
        sale.refund_amount_cents = refund_amount
        db.session.flush()

        restored: list[tuple[int, int]] = []
        if refund_amount == sale.total_cents or RESTOCK_ON_PARTIAL_REFUND:
            for product_id, quantity in _restoration_plan(sale):
                inventory_service.release(product_id, quantity, restock=False, commit=False)
                restored.append((product_id, quantity))

        db.session.commit()
        return sale, restored

    try:
        return run_with_retry(_op)
    except SaleError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise SalePersistenceError(f"Failed to {target_status} sale") from exc


def _reverse_with_audit(sale_id: int, *, target_status: str, amount_cents, reason, actor_id) -> Sale:
    event_type, failure_event_type = REVERSAL_EVENTS[target_status]
    try:
        actor = _require_actor(actor_id)
        if not reason or not str(reason).strip():
            raise InputValidationError("reason is required")
        amount_cents = _validate_refund_amount(amount_cents)
        sale, restored = _reverse_sale(
            sale_id,
            target_status=target_status,
            amount_cents=amount_cents,
            reason=str(reason).strip(),
            actor_id=actor,
        )
    except SaleError as exc:
        emit_event(
            failure_event_type,
            outcome=OUTCOME_FAILURE,
            actor_id=actor_id,
            target_type="sale",
            target_id=sale_id,
            description=f"Sale {sale_id} {target_status} failed: {exc.kind}",
            payload={"error": exc.kind, "amount_cents": amount_cents, "details": exc.details},
        )
        raise

    emit_event(
        event_type,
        actor_id=actor,
        target_type="sale",
        target_id=sale.id,
        description=f"Sale {sale.invoice_number} {target_status}",
        payload={
            "sale_id": sale.id,
            "invoice_number": sale.invoice_number,
            "total_cents": sale.total_cents,
            "refund_amount_cents": sale.refund_amount_cents,
            "reason": sale.refund_reason,
            "stock_restored": [{"product_id": pid, "quantity": qty} for pid, qty in restored],
        },
    )
    return sale


def refund_sale(
    sale_id: int,
    amount_cents: int | None = None,
    reason: str | None = None,
    actor_id: str | int | None = None,
) -> Sale:
    """
    Refund a completed sale. amount_cents defaults to the full total.

    Only a full-amount refund puts the sold quantities back on hand.
    """
    return _reverse_with_audit(
        sale_id,
        target_status=SALE_STATUS_REFUNDED,
        amount_cents=amount_cents,
        reason=reason,
        actor_id=actor_id,
    )


def cancel_sale(sale_id: int, reason: str | None = None, actor_id: str | int | None = None) -> Sale:
    """Cancel a completed sale: full reversal, stock restored."""
    return _reverse_with_audit(
        sale_id,
        target_status=SALE_STATUS_CANCELLED,
        amount_cents=None,
        reason=reason,
        actor_id=actor_id,
    )


# =============================================================================
# READS
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise SaleNotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def get_sale_by_invoice(invoice_number: str) -> Sale:
    sale = db.session.query(Sale).filter_by(invoice_number=invoice_number).first()
    if not sale:
        raise SaleNotFoundError(
            f"Sale {invoice_number} not found",
            details={"invoice_number": invoice_number},
        )
    return sale


def list_sales(
    *,
    status: str | None = None,
    payment_method: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = 1,
    per_page: int = 20,
) -> dict:
    page = max(page, 1)
    per_page = max(1, min(per_page, 200))

    q = db.session.query(Sale)
    if status:
        q = q.filter(Sale.status == status)
    if payment_method:
        q = q.filter(Sale.payment_method == payment_method)
    if start is not None:
        q = q.filter(Sale.created_at >= start)
    if end is not None:
        q = q.filter(Sale.created_at <= end)

    total = q.count()
    sales = (
        q.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "sales": sales,
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "pages": (total + per_page - 1) // per_page,
        },
    }
