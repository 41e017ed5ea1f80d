"""
cart_main.py — FastAPI Entry Point for the Cart Service

This module provides the REST API of the cart service. The service owns the
per-user cart lines and is the only component that reads or writes them.

Responsibilities:
    • Add products to a user's cart (atomic quantity increment)
    • Return a user's current cart
    • Clear a whole cart on explicit request
    • Remove exactly the lines of a snapshot (used by the order service after checkout)
    • Provide system health information

Run with:
    uvicorn checkout_service.cart_main:app --port 4001
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request

from .cart_store import CartStore
from .config import Settings
from .http_errors import register_error_handlers
from .logging_config import get_logger, setup_logging
from .models import AddItemRequest, CartResponse, CartSnapshot, ClearLinesRequest
from .resources import CartResources

log = get_logger(__name__)


def get_store(request: Request) -> CartStore:
    return request.app.state.resources.store


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Builds the cart service application.

    The database is opened on application startup and closed on shutdown.

    Args:
        settings (Optional[Settings]): Settings to use; read from the environment when omitted.

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or Settings.from_env()
    resources = CartResources(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("Cart service starting...")
        resources.startup()
        app.state.resources = resources
        yield
        resources.shutdown()
        log.info("Cart service stopped.")

    app = FastAPI(title="Cart Service", lifespan=lifespan)
    register_error_handlers(app)

    @app.get("/cart/{user_id}", response_model=CartResponse)
    def get_cart(user_id: str, store: CartStore = Depends(get_store)):
        return store.get_cart(user_id).to_wire()

    @app.post("/cart/{user_id}/add", response_model=CartResponse)
    def add_item(user_id: str, body: AddItemRequest, store: CartStore = Depends(get_store)):
        """
        Adds `qty` units of `productId` to the cart and returns the updated cart.

        Responds 400 if productId or qty is missing or qty is not a positive integer.
        """
        snapshot = store.add_item(user_id, body.productId, body.qty)
        return snapshot.to_wire()

    @app.post("/cart/{user_id}/clear")
    def clear_cart(user_id: str, store: CartStore = Depends(get_store)):
        store.clear_cart(user_id)
        return {"ok": True}

    @app.post("/cart/{user_id}/clear-lines")
    def clear_lines(user_id: str, body: ClearLinesRequest, store: CartStore = Depends(get_store)):
        """Removes exactly the given lines; quantity added since the snapshot stays in the cart."""
        snapshot = CartSnapshot(user_id=user_id, items=tuple(body.items))
        store.clear_lines(user_id, snapshot, clear_id=body.clearId)
        return {"ok": True}

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    return app


_settings = Settings.from_env()
setup_logging(_settings.log_level, _settings.log_file)
app = create_app(_settings)
