"""
Concurrency tests against a file-backed SQLite database.

Each worker runs in its own thread with its own app context, session and
connection, so the store (not the test) has to serialize the writers.
"""
import os
import tempfile
import threading
import unittest

from retail_ledger import create_app
from retail_ledger.extensions import db
from retail_ledger.models import InventoryTransaction, Order
from retail_ledger.services import checkout_service, inventory_service, products_service
from retail_ledger.services.cart_service import Cart
from retail_ledger.services.errors import InsufficientStock


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "RETRY_BACKOFF_BASE": 0.01,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            product = products_service.create_product(
                sku="CONCUR-D",
                name="Last Unit",
                price_cents=2500,
                initial_stock=1,
            )
            self.product_id = product.id

            many = products_service.create_product(
                sku="CONCUR-M",
                name="Few Units",
                price_cents=100,
                initial_stock=5,
            )
            self.many_id = many.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _cart_for(self, product_id, quantity=1):
        with self.app.app_context():
            product = products_service.get_product(product_id)
            cart = Cart(tax_rate_bps=500)
            cart.add(product, quantity)
            db.session.remove()
        return cart

    def test_two_checkouts_for_last_unit(self):
        carts = [self._cart_for(self.product_id), self._cart_for(self.product_id)]
        results = []
        lock = threading.Lock()
        start = threading.Barrier(len(carts))

        def worker(cart):
            with self.app.app_context():
                try:
                    start.wait()
                    order = checkout_service.checkout(cart, "card")
                    with lock:
                        results.append(order.order_number)
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=(cart,)) for cart in carts]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        placed = [r for r in results if isinstance(r, str)]
        failed = [r for r in results if not isinstance(r, str)]
        self.assertEqual(len(placed), 1, results)
        self.assertEqual(len(failed), 1, results)
        self.assertIsInstance(failed[0], InsufficientStock)

        with self.app.app_context():
            self.assertEqual(inventory_service.get_quantity(self.product_id), 0)
            self.assertEqual(db.session.query(Order).count(), 1)
            sales = db.session.query(InventoryTransaction).filter_by(type="sale").count()
            self.assertEqual(sales, 1)
            self.assertEqual(inventory_service.reconcile_ledger(), [])

    def test_parallel_decrements_keep_ledger_invariant(self):
        results = []
        lock = threading.Lock()

        def worker(n):
            with self.app.app_context():
                try:
                    inventory_service.decrement(
                        product_id=self.many_id,
                        quantity=1,
                        idempotency_key=f"parallel:{n}",
                    )
                    with lock:
                        results.append("ok")
                except InsufficientStock:
                    with lock:
                        results.append("short")
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(results.count("ok"), 5, results)
        self.assertEqual(results.count("short"), 3, results)

        with self.app.app_context():
            self.assertEqual(inventory_service.get_quantity(self.many_id), 0)
            self.assertTrue(inventory_service.verify_ledger(self.many_id)["consistent"])


if __name__ == "__main__":
    unittest.main()
