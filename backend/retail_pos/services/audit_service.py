# Overview: Audit sink; fire-and-forget delivery of sale pipeline outcome events.

from __future__ import annotations

import json
import logging
import queue
import threading
from typing import Any, Callable

from flask import Flask
from sqlalchemy.orm import Session

from ..extensions import db
from ..models import ActivityEvent
from ..time_utils import parse_iso_datetime, to_utc_z, utcnow

"""
Audit Sink Invariants (authoritative)

- emit() never raises and never blocks on delivery. A full queue, a missing
  app, or a failing writer is logged locally and the event is dropped.
- Events are recorded after the operation they describe has committed or
  rolled back; audit rows are never part of the sale transaction.
- Delivery uses its own session so a failing audit write cannot roll back
  pipeline state.
- The ActivityEvent table is append-only.
"""

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"

_STOP = object()


def write_activity_event(app: Flask, event_type: str, payload: dict) -> None:
    """Default writer: persist one event as an ActivityEvent row."""
    with app.app_context():
        with Session(db.engine) as session:
            session.add(
                ActivityEvent(
                    event_type=event_type,
                    category=payload.get("category", "sales"),
                    severity=payload.get("severity", "info"),
                    outcome=payload.get("outcome", OUTCOME_SUCCESS),
                    actor_id=_as_str(payload.get("actor_id")),
                    target_type=payload.get("target_type"),
                    target_id=_as_str(payload.get("target_id")),
                    description=(payload.get("description") or event_type)[:500],
                    payload=json.dumps(payload.get("data") or {}, default=str, sort_keys=True),
                    occurred_at=parse_iso_datetime(payload.get("occurred_at")) or utcnow(),
                )
            )
            session.commit()


def _as_str(value: Any) -> str | None:
    return None if value is None else str(value)


class AuditSink:
    """
    In-process channel between the sale pipeline and the activity log.

    With AUDIT_ASYNC enabled (the default) events go onto a bounded queue
    drained by a daemon thread; otherwise they are written inline, still
    with every failure swallowed.
    """

    def __init__(self, app: Flask | None = None, writer: Callable[[Flask, str, dict], None] | None = None):
        self._app: Flask | None = None
        self._writer = writer or write_activity_event
        self._queue: queue.Queue | None = None
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()
        self.asynchronous = True
        self.dropped = 0
        self.failed = 0
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.shutdown()
        self._app = app
        self.asynchronous = bool(app.config.get("AUDIT_ASYNC", True))
        self._queue = queue.Queue(maxsize=int(app.config.get("AUDIT_QUEUE_SIZE", 1000)))
        app.extensions["audit_sink"] = self

    def stats(self) -> dict:
        return {
            "asynchronous": self.asynchronous,
            "queue_depth": self._queue.qsize() if self._queue is not None else 0,
            "worker_alive": bool(self._worker is not None and self._worker.is_alive()),
            "dropped": self.dropped,
            "failed": self.failed,
        }

    def set_writer(self, writer: Callable[[Flask, str, dict], None] | None) -> None:
        """Swap the delivery function; None restores the ActivityEvent writer."""
        self._writer = writer or write_activity_event

    def emit(self, event_type: str, payload: dict) -> None:
        try:
            if self._app is None:
                logger.warning("Audit sink not initialized; dropping %s event", event_type)
                self._count_dropped()
                return
            if not self.asynchronous:
                self._deliver(event_type, payload)
                return
            self._ensure_worker()
            self._queue.put_nowait((event_type, payload))
        except queue.Full:
            self._count_dropped()
            logger.warning("Audit queue full; dropping %s event", event_type)
        except Exception:
            self._count_dropped()
            logger.exception("Failed to enqueue %s audit event", event_type)

    def _count_dropped(self) -> None:
        with self._lock:
            self.dropped += 1

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until queued events are delivered. Returns False on timeout."""
        q = self._queue
        if q is None or not self.asynchronous:
            return True
        done = threading.Event()

        def _join():
            q.join()
            done.set()

        threading.Thread(target=_join, daemon=True).start()
        return done.wait(timeout)

    def shutdown(self, timeout: float = 5.0) -> None:
        with self._lock:
            worker, self._worker = self._worker, None
        if worker is not None and worker.is_alive():
            self._queue.put(_STOP)
            worker.join(timeout)

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._run,
                args=(self._queue,),
                name="audit-sink",
                daemon=True,
            )
            self._worker.start()

    def _run(self, q: queue.Queue) -> None:
        while True:
            item = q.get()
            try:
                if item is _STOP:
                    return
                event_type, payload = item
                self._deliver(event_type, payload)
            finally:
                q.task_done()

    def _deliver(self, event_type: str, payload: dict) -> None:
        try:
            self._writer(self._app, event_type, payload)
        except Exception:
            with self._lock:
                self.failed += 1
            logger.exception("Audit sink failed to record %s event", event_type)


audit_sink = AuditSink()


def emit_event(
    event_type: str,
    *,
    category: str = "sales",
    outcome: str = OUTCOME_SUCCESS,
    actor_id: str | int | None = None,
    target_type: str | None = None,
    target_id: str | int | None = None,
    description: str | None = None,
    payload: dict | None = None,
) -> None:
    """
    Build a standard event envelope and hand it to the audit sink.

    Safe to call from any code path, including exception handlers.
    """
    audit_sink.emit(
        event_type,
        {
            "category": category,
            "outcome": outcome,
            "severity": "info" if outcome == OUTCOME_SUCCESS else "warning",
            "actor_id": actor_id,
            "target_type": target_type,
            "target_id": target_id,
            "description": description or event_type,
            "occurred_at": to_utc_z(utcnow()),
            "data": payload or {},
        },
    )


def recent_events(limit: int = 20, event_type: str | None = None) -> list[ActivityEvent]:
    q = db.session.query(ActivityEvent)
    if event_type:
        q = q.filter(ActivityEvent.event_type == event_type)
    return q.order_by(ActivityEvent.id.desc()).limit(limit).all()
