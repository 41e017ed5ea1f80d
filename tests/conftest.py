import pytest

from checkout_service.cart_store import CartStore
from checkout_service.config import Settings
from checkout_service.database import Database
from checkout_service.ledger import OrderLedger
from checkout_service.reconciler import ClearReconciler
from checkout_service.tables import cart_metadata, order_metadata

from tests.fakes import FakeCart, FakeLedger


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        cart_database_url=f"sqlite:///{tmp_path / 'cart.db'}",
        order_database_url=f"sqlite:///{tmp_path / 'orders.db'}",
        cart_service_url="http://testserver",
        client_retry_attempts=1,
        reconcile_interval_seconds=0,
    )


@pytest.fixture()
def cart_db(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'cart-store.db'}", cart_metadata)
    db.connect()
    yield db
    db.close()


@pytest.fixture()
def order_db(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'ledger.db'}", order_metadata)
    db.connect()
    yield db
    db.close()


@pytest.fixture()
def cart_store(cart_db):
    store = CartStore(cart_db)
    store.init_schema()
    return store


@pytest.fixture()
def ledger(order_db):
    ledger = OrderLedger(order_db)
    ledger.init_schema()
    return ledger


@pytest.fixture()
def fake_cart():
    return FakeCart()


@pytest.fixture()
def fake_ledger():
    return FakeLedger()


@pytest.fixture()
def reconciler(order_db, ledger, fake_cart):
    reconciler = ClearReconciler(order_db, ledger, fake_cart, interval=0.01)
    reconciler.init_schema()
    yield reconciler
    reconciler.stop()
