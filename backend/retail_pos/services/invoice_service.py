# Overview: Invoice sequencer; allocates day-scoped invoice numbers from an atomic counter.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InvoiceSequence
from ..time_utils import date_key, local_today
from .concurrency import run_with_retry


INVOICE_PREFIX = "INV"
ORDINAL_PAD = 4


def format_invoice_number(day_key: str, ordinal: int) -> str:
    return f"{INVOICE_PREFIX}-{day_key}-{ordinal:0{ORDINAL_PAD}d}"


def _allocate_ordinal(day_key: str) -> int:
    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.date_key == day_key)
        .values(next_ordinal=InvoiceSequence.next_ordinal + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        # Same transaction as the increment, so this reads our own write
        current = (
            db.session.query(InvoiceSequence.next_ordinal)
            .filter_by(date_key=day_key)
            .scalar()
        )
        return current - 1

    # First sale of the day
    db.session.add(InvoiceSequence(date_key=day_key, next_ordinal=2))
    try:
        db.session.flush()
        return 1
    except IntegrityError:
        # Another request created today's row first; take the update path
        db.session.rollback()
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        current = (
            db.session.query(InvoiceSequence.next_ordinal)
            .filter_by(date_key=day_key)
            .scalar()
        )
        return current - 1


def next_invoice_number(on_date: date | None = None, *, commit: bool = True) -> str:
    """
    Atomically allocate the next invoice number for a calendar day.

    Format: INV-YYYYMMDD-NNNN. The day defaults to the server's local date.
    With commit=True the allocation is its own short transaction: an ordinal
    handed out here is never handed out again, even if the sale that drew it
    fails to persist.
    """
    day_key = date_key(on_date or local_today())

    def _op() -> str:
        ordinal = _allocate_ordinal(day_key)
        if commit:
            db.session.commit()
        return format_invoice_number(day_key, ordinal)

    if commit:
        return run_with_retry(_op)
    return _op()


def peek_next_ordinal(on_date: date | None = None) -> int:
    """Ordinal the next allocation for the day would return (no side effects)."""
    day_key = date_key(on_date or local_today())
    current = (
        db.session.query(InvoiceSequence.next_ordinal)
        .filter_by(date_key=day_key)
        .scalar()
    )
    return int(current or 1)
