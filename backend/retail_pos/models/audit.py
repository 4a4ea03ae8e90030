from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


class ActivityEvent(db.Model):
    """
    Append-only record of sale pipeline outcomes.

    Written by the audit sink after the fact; never read by the pipeline
    itself. Rows are never updated or deleted.
    """
    __tablename__ = "activity_events"
    __table_args__ = (
        db.Index("ix_activity_events_target", "target_type", "target_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g. sale_created, sale_refund_failed
    category = db.Column(db.String(32), nullable=False, index=True)  # sales, inventory
    severity = db.Column(db.String(16), nullable=False, default="info")  # info, warning, error
    outcome = db.Column(db.String(16), nullable=False, index=True)  # success, failure

    actor_id = db.Column(db.String(64), nullable=True, index=True)
    target_type = db.Column(db.String(32), nullable=True)
    target_id = db.Column(db.String(64), nullable=True)

    description = db.Column(db.String(500), nullable=False)
    payload = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "category": self.category,
            "severity": self.severity,
            "outcome": self.outcome,
            "actor_id": self.actor_id,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "description": self.description,
            "payload": json.loads(self.payload) if self.payload else None,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
