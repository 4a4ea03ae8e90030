from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class InvoiceSequence(db.Model):
    """
    Atomic per-day invoice counter.

    WHY: Deriving the next invoice number from a count of today's sales races
    with concurrent checkouts. One row per calendar day is incremented in
    place, so two sales can never draw the same ordinal.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (
        db.UniqueConstraint("date_key", name="uq_invoice_sequences_date_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    date_key = db.Column(db.String(8), nullable=False)  # YYYYMMDD, server-local day
    next_ordinal = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date_key": self.date_key,
            "next_ordinal": self.next_ordinal,
            "updated_at": to_utc_z(self.updated_at),
        }
