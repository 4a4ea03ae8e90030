"""
Audit sink tests.

The sink is best-effort: a broken writer or a full queue is logged and
counted, never surfaced to the sale pipeline.
"""

import threading

import pytest
from flask import Flask

from retail_pos.errors import InsufficientStockError
from retail_pos.extensions import db
from retail_pos.models import ActivityEvent
from retail_pos.services import sales_service
from retail_pos.services.audit_service import AuditSink, audit_sink, emit_event, recent_events
from retail_pos.services.sales_service import PaymentInfo


ACTOR = "cashier-7"


class RecordingWriter:
    def __init__(self):
        self.events = []
        self.lock = threading.Lock()

    def __call__(self, app, event_type, payload):
        with self.lock:
            self.events.append((event_type, payload))


def test_emit_event_envelope():
    writer = RecordingWriter()
    audit_sink.set_writer(writer)

    emit_event("sale_created", actor_id=7, target_type="sale", target_id=3, payload={"total_cents": 100})

    ((event_type, payload),) = writer.events
    assert event_type == "sale_created"
    assert payload["category"] == "sales"
    assert payload["outcome"] == "success"
    assert payload["severity"] == "info"
    assert payload["actor_id"] == 7
    assert payload["occurred_at"].endswith("Z")
    assert payload["data"] == {"total_cents": 100}


def test_default_writer_persists_activity_event():
    emit_event("sale_refund_failed", outcome="failure", actor_id="m-1", target_type="sale", target_id=9)

    event = db.session.query(ActivityEvent).one()
    assert event.event_type == "sale_refund_failed"
    assert event.outcome == "failure"
    assert event.severity == "warning"
    assert event.target_id == "9"
    assert event.to_dict()["payload"] == {}


def test_failing_writer_does_not_break_sale(make_product):
    product = make_product()

    def broken(app, event_type, payload):
        raise RuntimeError("audit store offline")

    audit_sink.set_writer(broken)

    sale = sales_service.create_sale(
        [{"product_id": product.id, "quantity": 1}],
        PaymentInfo(payment_method="cash"),
        ACTOR,
    )

    assert sale.status == "completed"
    assert audit_sink.failed == 1


def test_async_delivery_flushes(make_product, monkeypatch):
    product = make_product()
    writer = RecordingWriter()
    audit_sink.set_writer(writer)
    monkeypatch.setattr(audit_sink, "asynchronous", True)

    for _ in range(3):
        sales_service.create_sale(
            [{"product_id": product.id, "quantity": 1}],
            PaymentInfo(payment_method="card"),
            ACTOR,
        )

    assert audit_sink.flush(timeout=5)
    assert [event_type for event_type, _ in writer.events] == ["sale_created"] * 3
    assert audit_sink.stats()["worker_alive"]


def test_full_queue_drops_instead_of_blocking():
    app = Flask(__name__)
    app.config.update(AUDIT_ASYNC=True, AUDIT_QUEUE_SIZE=1)
    started = threading.Event()
    release = threading.Event()

    def slow(app, event_type, payload):
        started.set()
        release.wait(5)

    sink = AuditSink(app, writer=slow)
    try:
        sink.emit("first", {})
        assert started.wait(5)
        # Worker is busy with "first"; "second" fills the queue
        sink.emit("second", {})
        sink.emit("third", {})

        assert sink.dropped == 1
    finally:
        release.set()
        sink.flush(timeout=5)
        sink.shutdown()


def test_uninitialized_sink_drops():
    sink = AuditSink()

    sink.emit("sale_created", {})

    assert sink.dropped == 1


def _hammer(target, threads=8, calls=100):
    barrier = threading.Barrier(threads)

    def run():
        barrier.wait()
        for _ in range(calls):
            target()

    workers = [threading.Thread(target=run) for _ in range(threads)]
    for t in workers:
        t.start()
    for t in workers:
        t.join(10)
    return threads * calls


def test_concurrent_drops_are_all_counted():
    sink = AuditSink()

    total = _hammer(lambda: sink.emit("sale_created", {}))

    assert sink.dropped == total
    assert sink.stats()["dropped"] == total


def test_concurrent_writer_failures_are_all_counted():
    app = Flask(__name__)
    app.config.update(AUDIT_ASYNC=False)

    def broken(app, event_type, payload):
        raise RuntimeError("audit store offline")

    sink = AuditSink(app, writer=broken)

    total = _hammer(lambda: sink.emit("sale_created", {}))

    assert sink.failed == total
    assert sink.dropped == 0


@pytest.mark.parametrize("event_type,expected", [(None, 3), ("sale_created", 2)])
def test_recent_events(make_product, event_type, expected):
    product = make_product(quantity=2)
    payment = PaymentInfo(payment_method="cash")
    sales_service.create_sale([{"product_id": product.id, "quantity": 1}], payment, ACTOR)
    sales_service.create_sale([{"product_id": product.id, "quantity": 1}], payment, ACTOR)
    with pytest.raises(InsufficientStockError):
        sales_service.create_sale([{"product_id": product.id, "quantity": 1}], payment, ACTOR)

    found = recent_events(limit=10, event_type=event_type)

    assert len(found) == expected
    assert found[0].id > found[-1].id
