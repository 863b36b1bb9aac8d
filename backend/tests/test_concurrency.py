# Overview: Concurrency tests against a file-backed SQLite database shared by worker threads.

"""
Concurrent writers on one product.

SQLite ignores SELECT ... FOR UPDATE, so these exercise the version_id
check on products: a writer that read a stale stock value fails and rolls
back instead of committing. Whatever the interleaving, committed state must
match the ledger and stock never goes below zero.
"""

import threading

import pytest

from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import Product, Sale, StockMovement, User
from backoffice.services import inventory_service, ledger_service, sales_service
from backoffice.validation import ServiceError


WORKERS = 8


@pytest.fixture(scope='function')
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _seed(app, stock):
    with app.app_context():
        user = User(name="Racer", email="racer@backoffice.local")
        product = Product(sku="RACE-1", name="Contended", stock=stock, cost=1.0, retail_price=2.0)
        db.session.add_all([user, product])
        db.session.commit()
        return user.id, product.id


def _run_workers(app, target):
    barrier = threading.Barrier(WORKERS)
    outcomes = []
    lock = threading.Lock()

    def _worker():
        with app.app_context():
            barrier.wait()
            try:
                target()
                outcome = "ok"
            except ServiceError as e:
                outcome = e.kind
            except Exception:
                outcome = "error"
            finally:
                db.session.remove()
            with lock:
                outcomes.append(outcome)

    threads = [threading.Thread(target=_worker) for _ in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def test_concurrent_sales_never_oversell(file_app):
    user_id, product_id = _seed(file_app, stock=5)

    outcomes = _run_workers(
        file_app,
        lambda: sales_service.create_sale(
            user_id=user_id,
            client_name="Race",
            items=[{"product_id": product_id, "quantity": 3}],
        ),
    )

    assert len(outcomes) == WORKERS
    assert "error" not in outcomes
    assert set(outcomes) <= {"ok", "insufficient_stock", "internal"}
    with file_app.app_context():
        sold = db.session.query(Sale).count()
        stock = db.session.get(Product, product_id).stock

        assert sold <= 1
        assert outcomes.count("ok") == sold
        assert stock == 5 - 3 * sold
        assert stock >= 0
        assert ledger_service.rebuild_stock(product_id)["consistent"] is True


def test_concurrent_inputs_lose_no_update(file_app):
    user_id, product_id = _seed(file_app, stock=0)

    outcomes = _run_workers(
        file_app,
        lambda: inventory_service.register_input(
            product_id=product_id, quantity=1, unit_cost=1.0, user_id=user_id,
        ),
    )

    assert len(outcomes) == WORKERS
    assert "error" not in outcomes
    assert set(outcomes) <= {"ok", "internal"}
    with file_app.app_context():
        recorded = db.session.query(StockMovement).count()
        assert recorded == outcomes.count("ok")
        assert db.session.get(Product, product_id).stock == recorded
        assert ledger_service.rebuild_stock(product_id)["consistent"] is True
