"""
resources.py — Process-scoped resource handles for both services.

Each service builds exactly one resources object, starts it when the
application starts and shuts it down when the application stops. Every
component receives what it needs from here explicitly; nothing is held in
module-level globals.
"""

from datetime import timedelta
from typing import Optional

import httpx

from .cart_store import CartStore
from .clients import CartServiceClient
from .config import Settings
from .database import Database
from .ledger import OrderLedger
from .logging_config import get_logger
from .reconciler import ClearReconciler
from .tables import cart_metadata, order_metadata
from .workflow import OrderOrchestrator

log = get_logger(__name__)


class CartResources:
    """Database and cart store of the cart service."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.db = Database(settings.cart_database_url, cart_metadata)
        self.store = CartStore(self.db, clear_retention=timedelta(days=settings.clear_retention_days))

    def startup(self):
        self.db.connect()
        self.store.init_schema()
        log.info("Cart service resources ready.")

    def shutdown(self):
        self.db.close()


class OrderResources:
    """
    Database, ledger, cart client, reconciler and orchestrator of the order service.

    Args:
        settings (Settings): Process settings.
        cart_client (Optional[CartServiceClient]): Client to use instead of one
            built from `settings.cart_service_url`. It is not closed on shutdown.
    """

    def __init__(self, settings: Settings, cart_client: Optional[CartServiceClient] = None):
        self.settings = settings
        self.db = Database(settings.order_database_url, order_metadata)
        self.ledger = OrderLedger(self.db)
        self._owns_cart_client = cart_client is None
        self.cart_client = cart_client
        self.reconciler: Optional[ClearReconciler] = None
        self.orchestrator: Optional[OrderOrchestrator] = None

    def startup(self):
        self.db.connect()
        self.ledger.init_schema()

        if self.cart_client is None:
            self.cart_client = CartServiceClient(
                base_url=self.settings.cart_service_url,
                timeout=httpx.Timeout(self.settings.http_connect_timeout, read=self.settings.http_read_timeout),
                retry_attempts=self.settings.client_retry_attempts,
            )

        self.reconciler = ClearReconciler(
            self.db,
            self.ledger,
            self.cart_client,
            interval=self.settings.reconcile_interval_seconds,
        )
        self.reconciler.init_schema()
        self.orchestrator = OrderOrchestrator(
            cart_reader=self.cart_client,
            cart_mutator=self.cart_client,
            order_appender=self.ledger,
            on_clear_failed=self.reconciler.enqueue_failure,
        )

        if self.settings.reconcile_interval_seconds > 0:
            self.reconciler.start()
        log.info("Order service resources ready.")

    def shutdown(self):
        if self.reconciler is not None:
            self.reconciler.stop()
        if self.cart_client is not None and self._owns_cart_client:
            self.cart_client.close()
            self.cart_client = None
        self.db.close()
