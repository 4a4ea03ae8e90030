"""
Threaded concurrency tests against a file-backed SQLite database.

Each worker pushes its own app context and session, the way concurrent
requests do under a threaded WSGI server.
"""

import os
import tempfile
import threading
import unittest

from retail_pos import create_app
from retail_pos.errors import AlreadyRefundedError, InsufficientStockError
from retail_pos.extensions import db
from retail_pos.models import Product, Sale
from retail_pos.services import inventory_service, sales_service
from retail_pos.services.audit_service import audit_sink


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "AUDIT_ASYNC": False,
            "DB_RETRY_ATTEMPTS": 5,
            "DB_RETRY_BACKOFF": 0.05,
        })

        self.audited = []
        self.audit_lock = threading.Lock()

        def record(app, event_type, payload):
            with self.audit_lock:
                self.audited.append(event_type)

        audit_sink.set_writer(record)

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            product = Product(
                sku="CONCUR-1",
                name="Concurrent Product",
                price_cents=1000,
                cost_price_cents=400,
                quantity=20,
                is_active=True,
            )
            scarce = Product(
                sku="CONCUR-2",
                name="Last Units",
                price_cents=2500,
                cost_price_cents=1500,
                quantity=5,
                is_active=True,
            )
            db.session.add_all([product, scarce])
            db.session.commit()
            self.product_id = product.id
            self.scarce_id = scarce.id

    def tearDown(self):
        audit_sink.set_writer(None)
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_workers(self, target, args_list):
        results = []
        lock = threading.Lock()

        def worker(*args):
            with self.app.app_context():
                try:
                    value = target(*args)
                    with lock:
                        results.append(value)
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=args) for args in args_list]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_concurrent_sales_get_distinct_invoices(self):
        def sell(_):
            sale = sales_service.create_sale(
                [{"product_id": self.product_id, "quantity": 1}],
                {"payment_method": "cash"},
                "cashier-1",
            )
            return sale.invoice_number

        results = self._run_workers(sell, [(i,) for i in range(8)])

        errors = [r for r in results if isinstance(r, Exception)]
        self.assertFalse(errors)
        self.assertEqual(len(results), 8)
        self.assertEqual(len(results), len(set(results)))

        with self.app.app_context():
            self.assertEqual(inventory_service.get_quantity_on_hand(self.product_id), 12)
            self.assertEqual(db.session.query(Sale).count(), 8)

    def test_concurrent_reservations_never_oversell(self):
        def sell(_):
            sales_service.create_sale(
                [{"product_id": self.scarce_id, "quantity": 3}],
                {"payment_method": "card"},
                "cashier-2",
            )
            return "sold"

        results = self._run_workers(sell, [(0,), (1,)])

        self.assertEqual(results.count("sold"), 1)
        failures = [r for r in results if r != "sold"]
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], InsufficientStockError)

        with self.app.app_context():
            self.assertEqual(inventory_service.get_quantity_on_hand(self.scarce_id), 2)

    def test_concurrent_refunds_apply_once(self):
        with self.app.app_context():
            sale = sales_service.create_sale(
                [{"product_id": self.product_id, "quantity": 4}],
                {"payment_method": "cash"},
                "cashier-1",
            )
            sale_id = sale.id

        def refund(_):
            sales_service.refund_sale(sale_id, reason="Returned", actor_id="manager-1")
            return "refunded"

        results = self._run_workers(refund, [(0,), (1,), (2,)])

        self.assertEqual(results.count("refunded"), 1)
        for r in results:
            if r != "refunded":
                self.assertIsInstance(r, AlreadyRefundedError)

        with self.app.app_context():
            self.assertEqual(inventory_service.get_quantity_on_hand(self.product_id), 20)
            self.assertEqual(db.session.get(Sale, sale_id).status, "refunded")

        self.assertEqual(self.audited.count("sale_refunded"), 1)
        self.assertEqual(self.audited.count("sale_refund_failed"), 2)


if __name__ == "__main__":
    unittest.main()
